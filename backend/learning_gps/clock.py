"""UTC helpers; every timestamp the planner stores or compares is timezone-aware."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

DAY_SECONDS = 86400


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on round trip; naive values are read as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(later: datetime, earlier: datetime) -> float:
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / DAY_SECONDS  # type: ignore[operator]


__all__ = ["DAY_SECONDS", "days_between", "ensure_utc", "utcnow"]
