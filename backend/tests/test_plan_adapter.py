from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from learning_gps.config import get_settings
from learning_gps.duration_estimator import base_hours
from learning_gps.learning_plan import LearningPlan, MilestoneResult, SessionRecord
from learning_gps.plan_adapter import (
    PlanAdapter,
    PlanSnapshot,
    ahead_of_schedule_rule,
    behind_schedule_rule,
    failed_review_rule,
    fast_learner_rule,
    inactivity_review_rule,
    slow_concept_rule,
)
from learning_gps.plan_builder import PlanBuilder
from learning_gps.repositories import plan_repository
from learning_gps.text_generation import TextGenerationResult

from conftest import FakeTextGenerator

NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def _plan(**overrides) -> LearningPlan:
    values = dict(
        id="plan-1",
        student_id="student-1",
        goal_id="goal-1",
        concept_sequence=["a", "b", "c", "d"],
        concept_estimates={"a": 0.5, "b": 0.5, "c": 1.0, "d": 2.0},
        current_index=2,
        projected_completion_date=NOW + timedelta(days=30),
        last_recalculated_at=NOW,
    )
    values.update(overrides)
    return LearningPlan(**values)


def _snapshot(
    plan: Optional[LearningPlan] = None,
    *,
    mastery: Optional[Dict[str, float]] = None,
    failed: Optional[List[MilestoneResult]] = None,
) -> PlanSnapshot:
    return PlanSnapshot(
        plan=plan or _plan(),
        goal_name="Grade 5 Math",
        student_name="Maya",
        difficulties={"a": 2, "b": 3, "c": 4, "d": 8},
        mastery=mastery or {},
        failed_results=failed or [],
    )


def _record(session_id: str, code: str, minutes: float, *, days_ago: float = 0) -> SessionRecord:
    return SessionRecord(
        id=session_id,
        student_id="student-1",
        concept_code=code,
        started_at=NOW - timedelta(days=days_ago),
        duration_seconds=int(minutes * 60),
    )


def test_slow_concept_lists_similar_upcoming_concepts() -> None:
    recent = [_record("s1", "b", 61)]

    outcome = slow_concept_rule(_snapshot(), recent, "s1")

    assert outcome.action.applied
    assert outcome.action.description == (
        '"b" took 61min (estimated 30min). 1 similar concept(s) may also take longer: c'
    )
    assert outcome.message_request is None


def test_slow_concept_within_range_and_unknown_session() -> None:
    recent = [_record("s1", "b", 60)]

    assert not slow_concept_rule(_snapshot(), recent, "s1").action.applied
    assert not slow_concept_rule(_snapshot(), recent, "other").action.applied


def test_slow_concept_skips_concepts_outside_the_plan() -> None:
    recent = [_record("s1", "z", 600)]

    outcome = slow_concept_rule(_snapshot(), recent, "s1")

    assert not outcome.action.applied
    assert outcome.action.description == "Concept is not part of this plan"


def test_fast_learner_needs_three_quick_sessions() -> None:
    quick = [_record("s1", "a", 20), _record("s2", "b", 20), _record("s3", "c", 40)]
    assert fast_learner_rule(_snapshot(), quick).action.applied

    one_slow = [_record("s1", "a", 20), _record("s2", "b", 26), _record("s3", "c", 40)]
    assert not fast_learner_rule(_snapshot(), one_slow).action.applied
    assert not fast_learner_rule(_snapshot(), quick[:2]).action.applied


def test_inactivity_review_flags_unmastered_recent_concepts() -> None:
    recent = [_record("s2", "c", 30), _record("s1", "b", 30, days_ago=4)]

    outcome = inactivity_review_rule(_snapshot(mastery={"a": 0.95, "b": 0.6}), recent)

    assert outcome.action.applied
    assert outcome.action.description == "4-day gap detected. 1 recent concept(s) may need review: b"


def test_inactivity_review_ignores_short_gaps_and_mastered_concepts() -> None:
    short = [_record("s2", "c", 30), _record("s1", "b", 30, days_ago=2)]
    long = [_record("s2", "c", 30), _record("s1", "b", 30, days_ago=5)]

    assert not inactivity_review_rule(_snapshot(), short).action.applied
    assert not inactivity_review_rule(_snapshot(mastery={"a": 0.95, "b": 0.92}), long).action.applied


def test_failed_review_reports_concepts_still_below_mastery() -> None:
    failed = [
        MilestoneResult(
            id="r1",
            plan_id="plan-1",
            week_number=1,
            passed=False,
            score=0.5,
            concepts_tested=["a", "b"],
            completed_at=NOW,
        )
    ]

    outcome = failed_review_rule(_snapshot(mastery={"a": 0.9, "b": 0.4}, failed=failed))
    assert outcome.action.applied
    assert outcome.action.details == "Concepts needing re-review: b"

    recovered = failed_review_rule(_snapshot(mastery={"a": 0.9, "b": 0.9}, failed=failed))
    assert not recovered.action.applied
    assert not failed_review_rule(_snapshot()).action.applied


def test_behind_schedule_threshold() -> None:
    target = NOW + timedelta(days=10)
    within = _plan(target_completion_date=target, projected_completion_date=target + timedelta(days=14), is_ahead_of_schedule=False)
    beyond = _plan(target_completion_date=target, projected_completion_date=target + timedelta(days=15), is_ahead_of_schedule=False)

    assert not behind_schedule_rule(_snapshot(within)).action.applied
    outcome = behind_schedule_rule(_snapshot(beyond))
    assert outcome.action.applied
    assert outcome.action.description == "15 days behind target. Plan review triggered."
    assert outcome.message_request.fallback.startswith("You're 15 days behind")


def test_ahead_of_schedule_threshold() -> None:
    target = NOW + timedelta(days=60)
    within = _plan(target_completion_date=target, projected_completion_date=target - timedelta(days=28))
    beyond = _plan(target_completion_date=target, projected_completion_date=target - timedelta(days=29))

    assert not ahead_of_schedule_rule(_snapshot(within)).action.applied
    outcome = ahead_of_schedule_rule(_snapshot(beyond))
    assert outcome.action.applied
    assert "29 days ahead" in outcome.message_request.fallback


def test_schedule_rules_skip_without_target() -> None:
    snapshot = _snapshot(_plan(is_ahead_of_schedule=False))

    assert not behind_schedule_rule(snapshot).action.applied
    assert not ahead_of_schedule_rule(snapshot).action.applied


def _behind_plan(db_session, seed, fake_generator) -> LearningPlan:
    seed.student()
    seed.concept("a", difficulty=1)
    seed.concept("b", difficulty=2)
    goal_id = seed.goal(["a", "b"])
    target = datetime.now(timezone.utc) + timedelta(days=1)
    plan = PlanBuilder(get_settings(), fake_generator).build_plan(
        db_session, goal_id, "student-1", 1.0, target_date=target
    ).plan
    return plan


def test_adapter_runs_every_rule_and_falls_back_for_messages(db_session, seed, fake_generator) -> None:
    plan = _behind_plan(db_session, seed, fake_generator)

    plan_repository.apply_eta(
        db_session,
        plan.id,
        mastered_count=0,
        hours_completed=0.0,
        projected_completion_date=plan.target_completion_date + timedelta(days=20),
        velocity_hours_per_week=1.0,
        is_ahead_of_schedule=False,
    )

    summary = PlanAdapter(fake_generator).adapt_plans_after_session(db_session, "student-1", None)

    assert len(summary.adaptations) == 1
    result = summary.adaptations[0]
    assert [action.rule for action in result.adaptations_applied] == [
        "slow_concept",
        "fast_learner",
        "inactivity_review",
        "failed_review",
        "behind_schedule",
        "ahead_of_schedule",
    ]
    assert result.applied_count == 1
    assert summary.message == (
        'You\'re 20 days behind on "Grade 5 Math". Try adding one extra 15-minute session this week to catch up!'
    )


def test_adapter_uses_generated_message(db_session, seed, fake_generator) -> None:
    plan = _behind_plan(db_session, seed, fake_generator)

    plan_repository.apply_eta(
        db_session,
        plan.id,
        mastered_count=0,
        hours_completed=0.0,
        projected_completion_date=plan.target_completion_date + timedelta(days=20),
        velocity_hours_per_week=1.0,
        is_ahead_of_schedule=False,
    )
    generator = FakeTextGenerator([{"message": "Two short sessions this week will close the gap, Maya."}])

    result = PlanAdapter(generator).adapt_plan(db_session, plan.id, None)

    assert result.message == "Two short sessions this week will close the gap, Maya."
    assert "20 days behind schedule" in generator.prompts[0]


def test_adapter_isolates_failing_rules(db_session, seed, fake_generator, monkeypatch) -> None:
    plan = _behind_plan(db_session, seed, fake_generator)

    def explode(snapshot):
        raise RuntimeError("boom")

    monkeypatch.setattr("learning_gps.plan_adapter.failed_review_rule", explode)

    result = PlanAdapter(FakeTextGenerator([TextGenerationResult.unavailable("off")])).adapt_plan(
        db_session, plan.id, None
    )

    failed = next(action for action in result.adaptations_applied if action.rule == "failed_review")
    assert failed.description == "Rule evaluation failed: boom"
    assert len(result.adaptations_applied) == 6


def test_adapter_skips_inactive_plans(db_session, seed, fake_generator) -> None:
    plan = _behind_plan(db_session, seed, fake_generator)

    plan_repository.transition_status(db_session, plan.id, from_statuses=("ACTIVE",), to_status="PAUSED")

    assert PlanAdapter(fake_generator).adapt_plan(db_session, plan.id, None) is None
    assert PlanAdapter(fake_generator).adapt_plans_after_session(db_session, "student-1", None).adaptations == []


def test_adapter_judges_each_plan_against_its_own_concepts(db_session, seed, fake_generator) -> None:
    seed.student()
    seed.concept("easy1", difficulty=2)
    seed.concept("easy2", difficulty=2)
    seed.concept("hard", difficulty=10)
    seed.goal(["easy1", "easy2"], goal_id="goal-1", name="Warm-up")
    seed.goal(["hard"], goal_id="goal-2", name="Challenge")
    builder = PlanBuilder(get_settings(), fake_generator)
    easy_plan = builder.build_plan(db_session, "goal-1", "student-1", 2.0).plan
    hard_plan = builder.build_plan(db_session, "goal-2", "student-1", 2.0).plan
    session_id = seed.learning_session(
        "student-1", "hard", started_at=datetime.now(timezone.utc), duration_seconds=9000
    )

    adapter = PlanAdapter(fake_generator)
    summary = adapter.adapt_plans_after_session(db_session, "student-1", session_id)

    slow = {
        result.plan_id: next(a for a in result.adaptations_applied if a.rule == "slow_concept")
        for result in summary.adaptations
    }
    assert set(slow) == {easy_plan.id, hard_plan.id}
    assert not slow[easy_plan.id].applied
    assert slow[easy_plan.id].description == "Concept is not part of this plan"
    assert not slow[hard_plan.id].applied

    recent = [_record(session_id, "hard", 150)]
    snapshot = adapter.snapshot(db_session, easy_plan, recent)
    assert snapshot.difficulties["hard"] == 10
    assert snapshot.estimate_for("hard") == base_hours(10)
