"""Plan status transitions and mastery-driven progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .clock import ensure_utc, utcnow
from .errors import PlanLimitExceededError, PlanNotFoundError, PlanStateError
from .learning_plan import LearningPlan, PlanStatus
from .repositories import PlanRepository, plan_repository
from .telemetry import emit_event

logger = logging.getLogger(__name__)

MAX_ADVANCE_ATTEMPTS = 5


@dataclass(frozen=True)
class AdvanceOutcome:
    plan_id: str
    advanced: bool
    previous_index: int
    current_index: int
    completed: bool = False
    reason: Optional[str] = None


class PlanLifecycleManager:
    def __init__(self, *, plans: PlanRepository = plan_repository, max_active_plans: int = 3) -> None:
        self._plans = plans
        self._max_active_plans = max_active_plans

    def require(self, session: Session, plan_id: str) -> LearningPlan:
        plan = self._plans.get(session, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def pause(self, session: Session, plan_id: str) -> LearningPlan:
        return self._transition(
            session, plan_id, ("ACTIVE",), "PAUSED", "Only active plans can be paused."
        )

    def resume(self, session: Session, plan_id: str) -> LearningPlan:
        plan = self.require(session, plan_id)
        if plan.status != "PAUSED":
            raise PlanStateError("Only paused plans can be resumed.")
        active = self._plans.count_active(session, plan.student_id)
        if active >= self._max_active_plans:
            raise PlanLimitExceededError(active, self._max_active_plans)
        return self._transition(
            session, plan_id, ("PAUSED",), "ACTIVE", "Only paused plans can be resumed."
        )

    def abandon(self, session: Session, plan_id: str) -> LearningPlan:
        return self._transition(
            session,
            plan_id,
            ("ACTIVE", "PAUSED"),
            "ABANDONED",
            "This plan is already finished or abandoned.",
        )

    def update_target_date(
        self, session: Session, plan_id: str, target: Optional[datetime]
    ) -> LearningPlan:
        plan = self.require(session, plan_id)
        if plan.status in ("COMPLETED", "ABANDONED"):
            raise PlanStateError("This plan is already finished or abandoned.")
        target = ensure_utc(target)
        if target is None:
            raise PlanStateError("A target date is required.")
        if target <= utcnow():
            raise PlanStateError("Target date must be in the future.")
        self._plans.update_target_date(session, plan_id, target)
        return self.require(session, plan_id)

    def advance_after_mastery(
        self,
        session: Session,
        plan_id: str,
        concept_code: str,
        session_hours: float,
    ) -> AdvanceOutcome:
        """Move past ``concept_code`` and credit ``session_hours``.

        ``current_index`` becomes ``max(current_index, position + 1)`` through a
        compare-and-swap that is retried when a concurrent writer moved the index
        first. Reaching the end of the sequence completes the plan in the same write.
        """
        for attempt in range(1, MAX_ADVANCE_ATTEMPTS + 1):
            plan = self.require(session, plan_id)
            if plan.status != "ACTIVE":
                return AdvanceOutcome(
                    plan_id, False, plan.current_index, plan.current_index, reason=f"plan is {plan.status}"
                )
            try:
                position = plan.concept_sequence.index(concept_code)
            except ValueError:
                return AdvanceOutcome(
                    plan_id, False, plan.current_index, plan.current_index, reason="concept not in plan"
                )

            new_index = max(plan.current_index, position + 1)
            complete = new_index >= len(plan.concept_sequence)
            swapped = self._plans.advance_index(
                session,
                plan_id,
                expected_index=plan.current_index,
                new_index=new_index,
                hours_delta=max(session_hours, 0.0),
                complete=complete,
            )
            if swapped:
                self._record_advance(plan, new_index, complete)
                return AdvanceOutcome(plan_id, True, plan.current_index, new_index, completed=complete)
            logger.debug("Plan %s index moved concurrently (attempt %d); retrying", plan_id, attempt)

        plan = self.require(session, plan_id)
        logger.warning("Plan %s advance abandoned after %d contended attempts", plan_id, MAX_ADVANCE_ATTEMPTS)
        return AdvanceOutcome(
            plan_id, False, plan.current_index, plan.current_index, reason="concurrent update contention"
        )

    def complete_if_finished(self, session: Session, plan_id: str, mastered_count: int) -> bool:
        """Complete an ACTIVE plan once every concept in its sequence is mastered."""
        plan = self.require(session, plan_id)
        total = len(plan.concept_sequence)
        if plan.status != "ACTIVE" or mastered_count < total:
            return False
        swapped = self._plans.advance_index(
            session,
            plan_id,
            expected_index=plan.current_index,
            new_index=max(plan.current_index, total),
            hours_delta=0.0,
            complete=True,
        )
        if swapped:
            self._record_advance(plan, max(plan.current_index, total), True)
        return swapped

    def _record_advance(self, plan: LearningPlan, new_index: int, complete: bool) -> None:
        total = len(plan.concept_sequence)
        if complete:
            logger.info("Plan %s completed", plan.id)
            emit_event("plan_completed", plan_id=plan.id, student_id=plan.student_id)
        else:
            logger.info("Plan %s advanced to index %d/%d", plan.id, new_index, total)
        emit_event(
            "plan_advanced",
            plan_id=plan.id,
            previous_index=plan.current_index,
            current_index=new_index,
            total=total,
        )

    def _transition(
        self,
        session: Session,
        plan_id: str,
        from_statuses: tuple[PlanStatus, ...],
        to_status: PlanStatus,
        error_message: str,
    ) -> LearningPlan:
        plan = self.require(session, plan_id)
        if plan.status not in from_statuses:
            raise PlanStateError(error_message)
        if not self._plans.transition_status(
            session, plan_id, from_statuses=from_statuses, to_status=to_status
        ):
            raise PlanStateError(error_message)
        logger.info("Plan %s: %s -> %s", plan_id, plan.status, to_status)
        emit_event("plan_status_changed", plan_id=plan_id, previous=plan.status, status=to_status)
        return self.require(session, plan_id)


__all__ = ["AdvanceOutcome", "MAX_ADVANCE_ATTEMPTS", "PlanLifecycleManager"]
