"""Post-session plan adaptation rules.

Each rule is a pure function of a ``PlanSnapshot`` and the learner's recent
sessions. Rules only report; none of them rewrites stored estimates or
milestones. The coordinator gathers the snapshot, runs every rule in
isolation and performs the single text-generation call a triggered schedule
rule asks for.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .clock import DAY_SECONDS, days_between
from .duration_estimator import base_hours
from .learning_plan import (
    MASTERY_THRESHOLD,
    AdaptationAction,
    AdaptationResult,
    LearningPlan,
    MilestoneResult,
    SessionRecord,
)
from .repositories import CatalogRepository, PlanRepository, catalog_repository, plan_repository
from .rounding import round_half_up
from .telemetry import emit_event
from .text_generation import TextGenerator, request_structured

logger = logging.getLogger(__name__)

SLOW_CONCEPT_MULTIPLIER = 2.0
FAST_CONCEPT_DISCOUNT = 0.85
INACTIVITY_THRESHOLD_DAYS = 3
INACTIVITY_REVIEW_MASTERY = 0.9
INACTIVITY_REVIEW_WINDOW = 2
BEHIND_SCHEDULE_THRESHOLD_DAYS = 14
AHEAD_SCHEDULE_THRESHOLD_DAYS = 28
RECENT_SESSION_LIMIT = 10
FAILED_RESULT_LIMIT = 3
MESSAGE_MAX_TOKENS = 128


@dataclass(frozen=True)
class PlanSnapshot:
    plan: LearningPlan
    goal_name: str
    student_name: str
    difficulties: Dict[str, int]
    mastery: Dict[str, float]
    failed_results: List[MilestoneResult] = field(default_factory=list)

    def estimate_for(self, concept_code: str) -> float:
        stored = self.plan.concept_estimates.get(concept_code)
        if stored is not None:
            return stored
        return base_hours(self.difficulties.get(concept_code, 0))


@dataclass(frozen=True)
class MessageRequest:
    purpose: str
    prompt: str
    fallback: str


@dataclass(frozen=True)
class RuleOutcome:
    action: AdaptationAction
    message_request: Optional[MessageRequest] = None


@dataclass(frozen=True)
class AdaptationSummary:
    adaptations: List[AdaptationResult]
    message: Optional[str]


class MessagePayload(BaseModel):
    message: str = Field(..., min_length=1)


def _skip(rule: str, description: str) -> RuleOutcome:
    return RuleOutcome(AdaptationAction(rule=rule, description=description, applied=False))


def slow_concept_rule(
    snapshot: PlanSnapshot,
    recent: Sequence[SessionRecord],
    session_id: Optional[str],
) -> RuleOutcome:
    rule = "slow_concept"
    current = next((s for s in recent if s.id == session_id), None)
    if current is None or not current.concept_code or not current.duration_seconds:
        return _skip(rule, "Check if concept took >2x estimated time")

    code = current.concept_code
    sequence = snapshot.plan.concept_sequence
    if code not in sequence:
        return _skip(rule, "Concept is not part of this plan")

    estimated = snapshot.estimate_for(code)
    actual = current.duration_seconds / 3600
    if estimated <= 0 or actual <= estimated * SLOW_CONCEPT_MULTIPLIER:
        return _skip(rule, "Concept was within expected time range")

    difficulty = snapshot.difficulties.get(code, 0)
    upcoming = sequence[sequence.index(code) + 1 :]
    similar = [
        other
        for other in upcoming
        if other in snapshot.difficulties and abs(snapshot.difficulties[other] - difficulty) <= 1
    ]
    return RuleOutcome(
        AdaptationAction(
            rule=rule,
            description=(
                f'"{code}" took {round(actual * 60)}min (estimated {round(estimated * 60)}min). '
                f"{len(similar)} similar concept(s) may also take longer"
                + (f": {', '.join(similar)}" if similar else ".")
            ),
            applied=True,
            details=(
                f"Actual: {actual:.2f}h, Estimated: {estimated:.2f}h, "
                f"Ratio: {actual / estimated:.1f}x"
            ),
        )
    )


def fast_learner_rule(snapshot: PlanSnapshot, recent: Sequence[SessionRecord]) -> RuleOutcome:
    rule = "fast_learner"
    last_three = list(recent[:3])
    if len(last_three) < 3:
        return _skip(rule, "Not enough sessions to evaluate pace")

    for record in last_three:
        if not record.concept_code or not record.duration_seconds:
            return _skip(rule, "Pace is within normal range")
        if record.duration_seconds / 3600 >= snapshot.estimate_for(record.concept_code) * FAST_CONCEPT_DISCOUNT:
            return _skip(rule, "Pace is within normal range")

    return RuleOutcome(
        AdaptationAction(
            rule=rule,
            description="Last 3 concepts completed faster than estimated. Velocity adjustment reflected in ETA.",
            applied=True,
            details=f"Discount factor: {FAST_CONCEPT_DISCOUNT}",
        )
    )


def inactivity_review_rule(snapshot: PlanSnapshot, recent: Sequence[SessionRecord]) -> RuleOutcome:
    rule = "inactivity_review"
    if len(recent) < 2:
        return _skip(rule, "Not enough sessions to check inactivity")

    gap_days = days_between(recent[0].started_at, recent[1].started_at)
    if gap_days < INACTIVITY_THRESHOLD_DAYS:
        return _skip(rule, "No significant gap detected")

    plan = snapshot.plan
    start = max(0, plan.current_index - INACTIVITY_REVIEW_WINDOW)
    review = plan.concept_sequence[start : plan.current_index]
    needs_review = [code for code in review if snapshot.mastery.get(code, 0.0) < INACTIVITY_REVIEW_MASTERY]
    if not needs_review:
        return _skip(rule, "No significant gap detected")

    return RuleOutcome(
        AdaptationAction(
            rule=rule,
            description=(
                f"{round(gap_days)}-day gap detected. {len(needs_review)} recent concept(s) "
                f"may need review: {', '.join(needs_review)}"
            ),
            applied=True,
            details=f"Gap: {gap_days:.1f} days, Review needed: {len(needs_review)}",
        )
    )


def failed_review_rule(snapshot: PlanSnapshot) -> RuleOutcome:
    rule = "failed_review"
    if not snapshot.failed_results:
        return _skip(rule, "No failed milestones to address")

    still_failing: List[str] = []
    for result in snapshot.failed_results:
        for code in result.concepts_tested:
            if snapshot.mastery.get(code, 0.0) < MASTERY_THRESHOLD and code not in still_failing:
                still_failing.append(code)
    if not still_failing:
        return _skip(rule, "All milestone concepts now mastered")

    joined = ", ".join(still_failing)
    return RuleOutcome(
        AdaptationAction(
            rule=rule,
            description=f"{len(still_failing)} concept(s) from failed milestones still not mastered: {joined}",
            applied=True,
            details=f"Concepts needing re-review: {joined}",
        )
    )


def _schedule_gap_days(plan: LearningPlan) -> Optional[int]:
    """Days the projection lands after the target (negative when ahead)."""
    if plan.target_completion_date is None:
        return None
    seconds = (plan.projected_completion_date - plan.target_completion_date).total_seconds()
    return int(round_half_up(seconds / DAY_SECONDS))


def _schedule_details(plan: LearningPlan) -> str:
    target = plan.target_completion_date.date().isoformat() if plan.target_completion_date else "none"
    return f"Projected: {plan.projected_completion_date.date().isoformat()}, Target: {target}"


def behind_schedule_rule(snapshot: PlanSnapshot) -> RuleOutcome:
    rule = "behind_schedule"
    plan = snapshot.plan
    gap = _schedule_gap_days(plan)
    if plan.is_ahead_of_schedule or gap is None:
        return _skip(rule, "On schedule or no target date set")
    if gap <= BEHIND_SCHEDULE_THRESHOLD_DAYS:
        return _skip(rule, f"{gap} days behind but within threshold" if gap > 0 else "On schedule")

    goal = snapshot.goal_name
    prompt = (
        f'Generate a brief, encouraging message for a student who is {gap} days behind schedule on '
        f'their "{goal}" goal.\n\n'
        f"Student: {snapshot.student_name}\n\n"
        "REQUIREMENTS:\n"
        "- 1-2 sentences max\n"
        "- Acknowledge the gap without guilt or blame\n"
        "- Suggest ONE small actionable step\n"
        "- Be warm and specific\n"
        "- Avoid stock phrases like \"it's okay\" or \"don't worry\"\n\n"
        'Respond with JSON: {"message": "..."}'
    )
    return RuleOutcome(
        AdaptationAction(
            rule=rule,
            description=f"{gap} days behind target. Plan review triggered.",
            applied=True,
            details=_schedule_details(plan),
        ),
        MessageRequest(
            purpose="behind_schedule_message",
            prompt=prompt,
            fallback=f'You\'re {gap} days behind on "{goal}". Try adding one extra 15-minute session this week to catch up!',
        ),
    )


def ahead_of_schedule_rule(snapshot: PlanSnapshot) -> RuleOutcome:
    rule = "ahead_of_schedule"
    plan = snapshot.plan
    gap = _schedule_gap_days(plan)
    if not plan.is_ahead_of_schedule or gap is None:
        return _skip(rule, "Not ahead or no target date")
    days_ahead = -gap
    if days_ahead <= AHEAD_SCHEDULE_THRESHOLD_DAYS:
        return _skip(
            rule, f"{days_ahead} days ahead but within normal range" if days_ahead > 0 else "On schedule"
        )

    goal = snapshot.goal_name
    prompt = (
        f'Generate a brief, celebratory message for a student who is {days_ahead} days AHEAD of schedule '
        f'on their "{goal}" goal!\n\n'
        f"Student: {snapshot.student_name}\n\n"
        "REQUIREMENTS:\n"
        "- 1-2 sentences max\n"
        "- Celebrate their achievement\n"
        "- Suggest they could try a challenge or explore advanced topics\n"
        "- Be enthusiastic and specific\n\n"
        'Respond with JSON: {"message": "..."}'
    )
    return RuleOutcome(
        AdaptationAction(
            rule=rule,
            description=f"{days_ahead} days ahead of target. Advanced branch suggestion triggered.",
            applied=True,
            details=_schedule_details(plan),
        ),
        MessageRequest(
            purpose="ahead_of_schedule_message",
            prompt=prompt,
            fallback=f'Wow, {days_ahead} days ahead on "{goal}"! You might be ready for some advanced challenges!',
        ),
    )


class PlanAdapter:
    """Runs the adaptation rules for a learner's ACTIVE plans after a session."""

    def __init__(
        self,
        text_generator: TextGenerator,
        *,
        catalog: CatalogRepository = catalog_repository,
        plans: PlanRepository = plan_repository,
    ) -> None:
        self._text_generator = text_generator
        self._catalog = catalog
        self._plans = plans

    def snapshot(
        self, session: Session, plan: LearningPlan, recent: Sequence[SessionRecord] = ()
    ) -> PlanSnapshot:
        failed = self._plans.recent_milestone_results(
            session, plan.id, passed=False, limit=FAILED_RESULT_LIMIT
        )
        codes = list(plan.concept_sequence)
        for result in failed:
            codes.extend(result.concepts_tested)
        codes.extend(record.concept_code for record in recent if record.concept_code)
        concepts = self._catalog.get_concepts(session, codes)
        student = self._catalog.get_student(session, plan.student_id)
        return PlanSnapshot(
            plan=plan,
            goal_name=self._plans.goal_name(session, plan.id),
            student_name=student.display_name if student else "there",
            difficulties={code: concept.difficulty for code, concept in concepts.items()},
            mastery=self._catalog.mastery_of(session, plan.student_id, codes),
            failed_results=failed,
        )

    def adapt_plan(
        self,
        session: Session,
        plan_id: str,
        session_id: Optional[str],
        *,
        recent: Optional[Sequence[SessionRecord]] = None,
    ) -> AdaptationResult | None:
        plan = self._plans.get(session, plan_id)
        if plan is None or plan.status != "ACTIVE":
            return None
        if recent is None:
            recent = self._catalog.recent_completed_sessions(
                session, plan.student_id, limit=RECENT_SESSION_LIMIT
            )
        snapshot = self.snapshot(session, plan, recent)

        rules: List[tuple[str, Callable[[], RuleOutcome]]] = [
            ("slow_concept", lambda: slow_concept_rule(snapshot, recent, session_id)),
            ("fast_learner", lambda: fast_learner_rule(snapshot, recent)),
            ("inactivity_review", lambda: inactivity_review_rule(snapshot, recent)),
            ("failed_review", lambda: failed_review_rule(snapshot)),
            ("behind_schedule", lambda: behind_schedule_rule(snapshot)),
            ("ahead_of_schedule", lambda: ahead_of_schedule_rule(snapshot)),
        ]

        actions: List[AdaptationAction] = []
        message: Optional[str] = None
        for name, evaluate in rules:
            try:
                outcome = evaluate()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Adaptation rule %s failed for plan %s", name, plan_id)
                actions.append(
                    AdaptationAction(rule=name, description=f"Rule evaluation failed: {exc}", applied=False)
                )
                continue
            actions.append(outcome.action)
            if outcome.message_request is not None and message is None:
                message = self._render_message(outcome.message_request)

        result = AdaptationResult(plan_id=plan_id, adaptations_applied=actions, message=message)
        applied = [action.rule for action in actions if action.applied]
        if applied:
            logger.info("Plan %s: %d adaptation(s) applied: %s", plan_id, len(applied), ", ".join(applied))
        emit_event("plan_adapted", plan_id=plan_id, session_id=session_id, applied=applied)
        return result

    def adapt_plans_after_session(
        self, session: Session, student_id: str, session_id: Optional[str]
    ) -> AdaptationSummary:
        plans = self._plans.list_for_student(session, student_id, statuses=("ACTIVE",))
        if not plans:
            return AdaptationSummary(adaptations=[], message=None)

        recent = self._catalog.recent_completed_sessions(session, student_id, limit=RECENT_SESSION_LIMIT)
        results: List[AdaptationResult] = []
        first_message: Optional[str] = None
        for plan in plans:
            try:
                result = self.adapt_plan(session, plan.id, session_id, recent=recent)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to adapt plan %s", plan.id)
                continue
            if result is None:
                continue
            results.append(result)
            if result.message and first_message is None:
                first_message = result.message
        return AdaptationSummary(adaptations=results, message=first_message)

    def _render_message(self, request: MessageRequest) -> str:
        payload = request_structured(
            self._text_generator,
            request.prompt,
            max_tokens=MESSAGE_MAX_TOKENS,
            schema=MessagePayload,
            purpose=request.purpose,
        )
        if payload is not None and payload.message.strip():
            return payload.message.strip()
        return request.fallback


__all__ = [
    "AdaptationSummary",
    "MessageRequest",
    "PlanAdapter",
    "PlanSnapshot",
    "RuleOutcome",
    "ahead_of_schedule_rule",
    "behind_schedule_rule",
    "failed_review_rule",
    "fast_learner_rule",
    "inactivity_review_rule",
    "slow_concept_rule",
]
