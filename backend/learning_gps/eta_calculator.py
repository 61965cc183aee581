"""Live completion projections for ACTIVE plans."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .clock import DAY_SECONDS, ensure_utc, utcnow
from .config import Settings
from .duration_estimator import base_hours
from .learning_plan import MASTERY_THRESHOLD, ETASnapshot, LearningPlan
from .plan_lifecycle import PlanLifecycleManager
from .repositories import CatalogRepository, PlanRepository, catalog_repository, plan_repository
from .rounding import round_half_up, round_percent
from .telemetry import emit_event
from .text_generation import TextGenerator, request_structured

logger = logging.getLogger(__name__)

Trend = Literal["accelerating", "steady", "slowing", "insufficient_data"]

VELOCITY_WINDOW_DAYS = 14
MIN_TREND_SESSIONS = 3
TREND_THRESHOLD = 0.15
INSIGHT_MAX_TOKENS = 128


@dataclass(frozen=True)
class VelocityReport:
    current_weekly_hours: float
    previous_weekly_hours: float
    trend: Trend
    session_count: int


@dataclass(frozen=True)
class ETAUpdate:
    plan_id: str
    concepts_total: int
    concepts_mastered: int
    concepts_remaining: int
    progress_percent: int
    hours_remaining: float
    effective_weekly_hours: float
    projected_completion: datetime
    target_completion: Optional[datetime]
    previous_projection: datetime
    days_difference: int
    is_ahead_of_schedule: bool
    velocity: VelocityReport
    schedule_message: str
    insight: str
    snapshot_id: Optional[str] = None
    completed: bool = False


class InsightPayload(BaseModel):
    insight: str = Field(..., min_length=1)


def calculate_trend(current: float, previous: float) -> Trend:
    """Relative week-over-week change beyond 15% counts as a trend."""
    if current == 0 and previous == 0:
        return "steady"
    if previous == 0:
        return "accelerating"
    change = (current - previous) / previous
    if change > TREND_THRESHOLD:
        return "accelerating"
    if change < -TREND_THRESHOLD:
        return "slowing"
    return "steady"


def remaining_hours_factor(probability: float) -> float:
    if probability > 0.5:
        return 0.5
    if probability > 0.3:
        return 0.75
    return 1.0


def schedule_message(
    *,
    concepts_remaining: int,
    concepts_mastered: int,
    days_difference: int,
    is_ahead: bool,
    trend: Trend,
) -> str:
    if concepts_remaining == 0:
        return "Congratulations! You've completed all concepts in this goal!"
    if concepts_mastered == 0:
        return "Ready to begin your learning journey! Let's get started."
    if is_ahead:
        if days_difference > 14:
            return f"You're {days_difference} days ahead of schedule! Amazing pace!"
        if days_difference > 7:
            return f"{days_difference} days ahead! Keep up this great momentum."
        if days_difference > 0:
            return f"Right on track, {days_difference} days ahead."
        return "Right on schedule. Great consistency!"
    behind = abs(days_difference)
    if behind > 14:
        if trend == "accelerating":
            return f"{behind} days behind, but you're picking up speed! Keep going."
        return f"{behind} days behind schedule. Try adding an extra session this week!"
    if behind > 7:
        return f"{behind} days behind. A few extra practice sessions will get you back on track."
    return f"Slightly behind by {behind} days, totally catchable!"


def fallback_insight(
    student_name: str,
    goal_name: str,
    *,
    concepts_remaining: int,
    concepts_mastered: int,
    days_difference: int,
    is_ahead: bool,
) -> str:
    if concepts_remaining == 0:
        return f"Amazing work, {student_name}! You've mastered everything!"
    if concepts_mastered == 0:
        return f"Welcome to your {goal_name} journey, {student_name}! Let's start strong!"
    if is_ahead:
        return f"You're {days_difference} days ahead on {goal_name}. Keep that momentum going, {student_name}!"
    return f"{concepts_remaining} concepts to go on {goal_name}. You've got this, {student_name}!"


def _insight_prompt(
    student_name: str,
    goal_name: str,
    *,
    concepts_mastered: int,
    concepts_total: int,
    days_difference: int,
    is_ahead: bool,
    trend: Trend,
) -> str:
    schedule = (
        f"{days_difference} days ahead of schedule" if is_ahead else f"{abs(days_difference)} days behind schedule"
    )
    return (
        f"Write a one-sentence progress insight for {student_name}, who is working toward "
        f'"{goal_name}".\n\n'
        f"Progress: {concepts_mastered}/{concepts_total} concepts mastered\n"
        f"Schedule: {schedule}\n"
        f"Pace trend: {trend}\n\n"
        "Be specific and encouraging, and mention one concrete observation about their progress.\n"
        'Respond with JSON: {"insight": "..."}'
    )


class ETACalculator:
    def __init__(
        self,
        settings: Settings,
        text_generator: TextGenerator,
        *,
        catalog: CatalogRepository = catalog_repository,
        plans: PlanRepository = plan_repository,
        lifecycle: Optional[PlanLifecycleManager] = None,
    ) -> None:
        self._settings = settings
        self._text_generator = text_generator
        self._catalog = catalog
        self._plans = plans
        self._lifecycle = lifecycle or PlanLifecycleManager(
            plans=plans, max_active_plans=settings.max_active_plans
        )

    def calculate_student_velocity(
        self, session: Session, student_id: str, *, now: Optional[datetime] = None
    ) -> VelocityReport:
        """Weekly hours over the last two weeks against the two weeks before."""
        now = now or utcnow()
        boundary = now - timedelta(days=VELOCITY_WINDOW_DAYS)
        sessions = self._catalog.completed_sessions_between(
            session, student_id, now - timedelta(days=VELOCITY_WINDOW_DAYS * 2)
        )
        current_seconds = 0
        previous_seconds = 0
        for record in sessions:
            if ensure_utc(record.started_at) >= boundary:
                current_seconds += record.duration_seconds or 0
            else:
                previous_seconds += record.duration_seconds or 0

        weeks = VELOCITY_WINDOW_DAYS / 7
        current = round_half_up(current_seconds / 3600 / weeks, 2)
        previous = round_half_up(previous_seconds / 3600 / weeks, 2)

        trend: Trend = (
            "insufficient_data" if len(sessions) < MIN_TREND_SESSIONS else calculate_trend(current, previous)
        )
        return VelocityReport(current, previous, trend, len(sessions))

    def recalculate_plan_eta(
        self,
        session: Session,
        plan_id: str,
        session_id: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ETAUpdate | None:
        """Re-project an ACTIVE plan from live mastery; ``None`` for any other plan."""
        now = now or utcnow()
        plan = self._plans.get(session, plan_id)
        if plan is None or plan.status != "ACTIVE":
            return None

        sequence = plan.concept_sequence
        mastery = self._catalog.mastery_of(session, plan.student_id, sequence)
        concepts = self._catalog.get_concepts(session, sequence)

        mastered = 0
        hours_remaining = 0.0
        for code in sequence:
            probability = mastery.get(code, 0.0)
            if probability >= MASTERY_THRESHOLD:
                mastered += 1
                continue
            difficulty = concepts[code].difficulty if code in concepts else 0
            hours_remaining += base_hours(difficulty) * remaining_hours_factor(probability)
        hours_remaining = round_half_up(hours_remaining, 1)
        remaining = len(sequence) - mastered

        velocity = self.calculate_student_velocity(session, plan.student_id, now=now)
        effective = (
            velocity.current_weekly_hours
            or plan.velocity_hours_per_week
            or self._settings.default_weekly_hours
        )
        weeks = hours_remaining / effective
        projected = now + timedelta(days=math.ceil(weeks * 7))

        reference = plan.target_completion_date or plan.projected_completion_date
        days_difference = int(round_half_up((reference - projected).total_seconds() / DAY_SECONDS))
        is_ahead = days_difference >= 0

        message = schedule_message(
            concepts_remaining=remaining,
            concepts_mastered=mastered,
            days_difference=days_difference,
            is_ahead=is_ahead,
            trend=velocity.trend,
        )
        insight = self._insight(
            session,
            plan,
            concepts_mastered=mastered,
            concepts_remaining=remaining,
            days_difference=days_difference,
            is_ahead=is_ahead,
            trend=velocity.trend,
        )

        if not self._plans.apply_eta(
            session,
            plan_id,
            mastered_count=mastered,
            hours_completed=plan.total_estimated_hours - hours_remaining,
            projected_completion_date=projected,
            velocity_hours_per_week=effective,
            is_ahead_of_schedule=is_ahead,
        ):
            logger.info("Plan %s left ACTIVE during recalculation; projection discarded", plan_id)
            return None

        snapshot = self._plans.create_eta_snapshot(
            session,
            plan_id=plan_id,
            triggered_by_session_id=session_id,
            concepts_remaining=remaining,
            concepts_mastered=mastered,
            hours_remaining=hours_remaining,
            projected_completion=projected,
            velocity_at_snapshot=effective,
            is_ahead_of_schedule=is_ahead,
            days_difference=days_difference,
            insight=insight,
        )
        completed = self._lifecycle.complete_if_finished(session, plan_id, mastered)

        logger.info(
            "Plan %s ETA: %d/%d mastered, %.1fh remaining at %.2fh/week, projected %s (%+d days)",
            plan_id,
            mastered,
            len(sequence),
            hours_remaining,
            effective,
            projected.date().isoformat(),
            days_difference,
        )
        emit_event(
            "eta_recalculated",
            plan_id=plan_id,
            session_id=session_id,
            concepts_mastered=mastered,
            concepts_remaining=remaining,
            hours_remaining=hours_remaining,
            projected_completion=projected,
            days_difference=days_difference,
            trend=velocity.trend,
        )
        return ETAUpdate(
            plan_id=plan_id,
            concepts_total=len(sequence),
            concepts_mastered=mastered,
            concepts_remaining=remaining,
            progress_percent=round_percent(mastered, len(sequence)),
            hours_remaining=hours_remaining,
            effective_weekly_hours=effective,
            projected_completion=projected,
            target_completion=plan.target_completion_date,
            previous_projection=plan.projected_completion_date,
            days_difference=days_difference,
            is_ahead_of_schedule=is_ahead,
            velocity=velocity,
            schedule_message=message,
            insight=insight,
            snapshot_id=snapshot.id,
            completed=completed,
        )

    def update_plans_after_session(
        self, session: Session, student_id: str, session_id: Optional[str] = None
    ) -> List[ETAUpdate]:
        updates: List[ETAUpdate] = []
        for plan in self._plans.list_for_student(session, student_id, statuses=("ACTIVE",)):
            update = self.recalculate_plan_eta(session, plan.id, session_id)
            if update is not None:
                updates.append(update)
        return updates

    def get_eta_history(self, session: Session, plan_id: str, *, limit: int = 20) -> List[ETASnapshot]:
        return self._plans.eta_history(session, plan_id, limit=limit)

    def _insight(self, session: Session, plan: LearningPlan, **context) -> str:  # type: ignore[no-untyped-def]
        student = self._catalog.get_student(session, plan.student_id)
        student_name = student.display_name if student else "there"
        goal_name = self._plans.goal_name(session, plan.id)
        payload = request_structured(
            self._text_generator,
            _insight_prompt(
                student_name,
                goal_name,
                concepts_mastered=context["concepts_mastered"],
                concepts_total=len(plan.concept_sequence),
                days_difference=context["days_difference"],
                is_ahead=context["is_ahead"],
                trend=context["trend"],
            ),
            max_tokens=INSIGHT_MAX_TOKENS,
            schema=InsightPayload,
            purpose="eta_insight",
        )
        if payload is not None and payload.insight.strip():
            return payload.insight.strip()
        context.pop("trend")
        return fallback_insight(student_name, goal_name, **context)


__all__ = [
    "ETACalculator",
    "ETAUpdate",
    "Trend",
    "VelocityReport",
    "calculate_trend",
    "fallback_insight",
    "remaining_hours_factor",
    "schedule_message",
]
