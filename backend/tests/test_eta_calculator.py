from __future__ import annotations

from datetime import timedelta

import pytest

from learning_gps.clock import utcnow
from learning_gps.config import get_settings
from learning_gps.eta_calculator import ETACalculator, calculate_trend, schedule_message
from learning_gps.plan_builder import PlanBuilder
from learning_gps.repositories import plan_repository

from conftest import FakeTextGenerator

NOW = utcnow().replace(microsecond=0)


def test_calculate_trend() -> None:
    assert calculate_trend(0, 0) == "steady"
    assert calculate_trend(1.0, 0) == "accelerating"
    assert calculate_trend(1.2, 1.0) == "accelerating"
    assert calculate_trend(1.1, 1.0) == "steady"
    assert calculate_trend(0.8, 1.0) == "slowing"


@pytest.mark.parametrize(
    ("days", "is_ahead", "trend", "expected"),
    [
        (20, True, "steady", "You're 20 days ahead of schedule! Amazing pace!"),
        (10, True, "steady", "10 days ahead! Keep up this great momentum."),
        (3, True, "steady", "Right on track, 3 days ahead."),
        (0, True, "steady", "Right on schedule. Great consistency!"),
        (-20, False, "accelerating", "20 days behind, but you're picking up speed! Keep going."),
        (-20, False, "slowing", "20 days behind schedule. Try adding an extra session this week!"),
        (-10, False, "steady", "10 days behind. A few extra practice sessions will get you back on track."),
        (-2, False, "steady", "Slightly behind by 2 days, totally catchable!"),
    ],
)
def test_schedule_message_bands(days, is_ahead, trend, expected) -> None:
    message = schedule_message(
        concepts_remaining=3,
        concepts_mastered=2,
        days_difference=days,
        is_ahead=is_ahead,
        trend=trend,
    )
    assert message == expected


def test_schedule_message_start_and_finish() -> None:
    assert schedule_message(
        concepts_remaining=0, concepts_mastered=4, days_difference=0, is_ahead=True, trend="steady"
    ).startswith("Congratulations!")
    assert schedule_message(
        concepts_remaining=4, concepts_mastered=0, days_difference=-30, is_ahead=False, trend="steady"
    ).startswith("Ready to begin")


@pytest.fixture
def plan(db_session, seed, fake_generator):
    seed.student()
    seed.concept("a", difficulty=1)
    seed.concept("b", difficulty=5)
    seed.concept("c", difficulty=8)
    goal_id = seed.goal(["a", "b", "c"])
    return PlanBuilder(get_settings(), fake_generator).build_plan(
        db_session, goal_id, "student-1", 2.0, target_date=NOW + timedelta(days=30), now=NOW
    ).plan


def _calculator(generator=None) -> ETACalculator:
    return ETACalculator(get_settings(), generator or FakeTextGenerator())


def test_velocity_compares_the_last_two_fortnights(db_session, seed, plan) -> None:
    seed.learning_session("student-1", "a", started_at=NOW - timedelta(days=2), duration_seconds=3600)
    seed.learning_session("student-1", "b", started_at=NOW - timedelta(days=5), duration_seconds=3600)
    seed.learning_session("student-1", "b", started_at=NOW - timedelta(days=20), duration_seconds=3600)
    seed.learning_session("student-1", "b", started_at=NOW - timedelta(days=40), duration_seconds=3600)

    velocity = _calculator().calculate_student_velocity(db_session, "student-1", now=NOW)

    assert velocity.current_weekly_hours == 1.0
    assert velocity.previous_weekly_hours == 0.5
    assert velocity.trend == "accelerating"
    assert velocity.session_count == 3


def test_velocity_needs_three_sessions_for_a_trend(db_session, seed, plan) -> None:
    seed.learning_session("student-1", "a", started_at=NOW - timedelta(days=1), duration_seconds=1800)

    velocity = _calculator().calculate_student_velocity(db_session, "student-1", now=NOW)

    assert velocity.current_weekly_hours == 0.25
    assert velocity.trend == "insufficient_data"


def test_recalculation_projects_from_live_mastery(db_session, seed, plan) -> None:
    seed.mastery("student-1", "a", 0.9)
    seed.mastery("student-1", "b", 0.4)
    seed.learning_session("student-1", "a", started_at=NOW - timedelta(days=2), duration_seconds=3600)
    seed.learning_session("student-1", "b", started_at=NOW - timedelta(days=5), duration_seconds=3600)
    seed.learning_session("student-1", "b", started_at=NOW - timedelta(days=20), duration_seconds=3600)

    update = _calculator().recalculate_plan_eta(db_session, plan.id, "session-9", now=NOW)

    assert update.concepts_mastered == 1
    assert update.concepts_remaining == 2
    assert update.progress_percent == 33
    assert update.hours_remaining == 2.8
    assert update.effective_weekly_hours == 1.0
    assert update.projected_completion == NOW + timedelta(days=20)
    assert update.days_difference == 10
    assert update.is_ahead_of_schedule
    assert update.schedule_message == "10 days ahead! Keep up this great momentum."
    assert update.insight == "You're 10 days ahead on Grade 5 Math. Keep that momentum going, Maya!"
    assert not update.completed

    stored = plan_repository.get(db_session, plan.id)
    assert stored.current_index == 1
    assert stored.projected_completion_date == NOW + timedelta(days=20)
    assert stored.velocity_hours_per_week == 1.0

    history = _calculator().get_eta_history(db_session, plan.id)
    assert [snapshot.id for snapshot in history] == [update.snapshot_id]
    assert history[0].days_difference == 10


def test_recalculation_falls_back_to_plan_velocity(db_session, plan) -> None:
    generator = FakeTextGenerator([{"insight": "Ratios are next, and you're well ahead."}])

    update = _calculator(generator).recalculate_plan_eta(db_session, plan.id, now=NOW)

    assert update.effective_weekly_hours == 2.0
    assert update.hours_remaining == 3.4
    assert update.projected_completion == NOW + timedelta(days=12)
    assert update.days_difference == 18
    assert update.velocity.trend == "insufficient_data"
    assert update.schedule_message == "Ready to begin your learning journey! Let's get started."
    assert update.insight == "Ratios are next, and you're well ahead."
    assert "0/3 concepts mastered" in generator.prompts[0]


def test_recalculation_completes_a_finished_plan(db_session, seed, plan) -> None:
    for code in ("a", "b", "c"):
        seed.mastery("student-1", code, 0.95)

    update = _calculator().recalculate_plan_eta(db_session, plan.id, now=NOW)

    assert update.completed
    assert update.concepts_remaining == 0
    assert update.hours_remaining == 0
    assert update.schedule_message.startswith("Congratulations!")
    assert plan_repository.get(db_session, plan.id).status == "COMPLETED"
    assert _calculator().recalculate_plan_eta(db_session, plan.id, now=NOW) is None


def test_paused_plans_are_not_recalculated(db_session, plan) -> None:
    plan_repository.transition_status(db_session, plan.id, from_statuses=("ACTIVE",), to_status="PAUSED")

    calculator = _calculator()
    assert calculator.recalculate_plan_eta(db_session, plan.id, now=NOW) is None
    assert calculator.update_plans_after_session(db_session, "student-1") == []
    assert plan_repository.eta_history(db_session, plan.id) == []


def test_update_plans_after_session_covers_active_plans(db_session, plan) -> None:
    updates = _calculator().update_plans_after_session(db_session, "student-1", "session-1")

    assert [update.plan_id for update in updates] == [plan.id]
