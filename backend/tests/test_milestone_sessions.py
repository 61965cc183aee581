from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from learning_gps.cache import MilestoneSessionStore
from learning_gps.cache.milestone_sessions import session_key
from learning_gps.milestone_models import MilestoneAnswer, MilestoneSession


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def _attempt(clock: FakeClock, student_id: str = "student-1") -> MilestoneSession:
    return MilestoneSession(plan_id="plan-1", week_number=2, student_id=student_id, started_at=clock())


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    store = MilestoneSessionStore(ttl_seconds=60, clock=clock)
    store.set(_attempt(clock))

    clock.advance(60)
    assert store.get("plan-1", 2, "student-1") is not None

    clock.advance(1)
    assert store.get("plan-1", 2, "student-1") is None


def test_recording_answers_keeps_original_expiry() -> None:
    clock = FakeClock()
    store = MilestoneSessionStore(ttl_seconds=60, clock=clock)
    attempt = _attempt(clock)
    store.set(attempt)

    clock.advance(50)
    attempt.answers["q1"] = MilestoneAnswer(question_id="q1", selected_option_id="A", is_correct=True)
    store.set(attempt)

    clock.advance(20)
    assert store.get("plan-1", 2, "student-1") is None


def test_returned_attempts_are_copies() -> None:
    clock = FakeClock()
    store = MilestoneSessionStore(clock=clock)
    store.set(_attempt(clock))

    loaded = store.get("plan-1", 2, "student-1")
    loaded.answers["q1"] = MilestoneAnswer(question_id="q1", selected_option_id="B", is_correct=False)

    assert store.get("plan-1", 2, "student-1").answers == {}


def test_purge_expired_only_drops_stale_entries() -> None:
    clock = FakeClock()
    store = MilestoneSessionStore(ttl_seconds=30, clock=clock)
    store.set(_attempt(clock, "old"))
    clock.advance(40)
    store.set(_attempt(clock, "fresh"))

    assert store.purge_expired() == 1
    assert store.get("plan-1", 2, "fresh") is not None


def test_session_key_requires_identifiers() -> None:
    assert session_key(" plan-1 ", "3", "student-1") == ("plan-1", 3, "student-1")
    with pytest.raises(ValueError):
        session_key("", 1, "student-1")
