"""Expiring store for in-progress milestone attempts.

Entries are keyed by ``(plan_id, week_number, student_id)`` and dropped once
they outlive the configured TTL. The store is process-local; multi-instance
deployments must pin a learner's attempt to one instance or replace this with
a shared cache that offers the same interface.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

from ..clock import utcnow
from ..milestone_models import MilestoneSession

SessionKey = Tuple[str, int, str]


def session_key(plan_id: str, week_number: int, student_id: str) -> SessionKey:
    plan = plan_id.strip()
    student = student_id.strip()
    if not plan or not student:
        raise ValueError("Plan id and student id are required to track a milestone attempt.")
    return plan, int(week_number), student


@dataclass
class _SessionEntry:
    session: MilestoneSession
    stored_at: datetime


class MilestoneSessionStore:
    def __init__(
        self,
        *,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=max(ttl_seconds, 1))
        self._clock = clock
        self._entries: Dict[SessionKey, _SessionEntry] = {}
        self._lock = RLock()

    def configure(self, *, ttl_seconds: int) -> None:
        with self._lock:
            self._ttl = timedelta(seconds=max(ttl_seconds, 1))

    def get(self, plan_id: str, week_number: int, student_id: str) -> Optional[MilestoneSession]:
        key = session_key(plan_id, week_number, student_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self._ttl:
                self._entries.pop(key, None)
                return None
            return entry.session.model_copy(deep=True)

    def set(self, session: MilestoneSession) -> None:
        key = session_key(session.plan_id, session.week_number, session.student_id)
        with self._lock:
            previous = self._entries.get(key)
            same_attempt = previous is not None and previous.session.started_at == session.started_at
            stored_at = previous.stored_at if same_attempt else self._clock()  # type: ignore[union-attr]
            self._entries[key] = _SessionEntry(session=session.model_copy(deep=True), stored_at=stored_at)

    def delete(self, plan_id: str, week_number: int, student_id: str) -> None:
        key = session_key(plan_id, week_number, student_id)
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now - entry.stored_at > self._ttl]
            for key in expired:
                self._entries.pop(key, None)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


milestone_sessions = MilestoneSessionStore()

__all__ = ["MilestoneSessionStore", "milestone_sessions", "session_key"]
