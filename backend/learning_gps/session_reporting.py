"""Entry point for learning sessions finished elsewhere in the platform.

A completed session is recorded, every ACTIVE plan containing a now-mastered
concept is advanced, projections are refreshed and finally the adaptation
rules run. Advancement is the only step whose failure propagates; the
projection and adaptation steps are logged and skipped on error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from .clock import ensure_utc, utcnow
from .errors import StudentNotFoundError
from .eta_calculator import ETACalculator, ETAUpdate
from .learning_plan import MASTERY_THRESHOLD, AdaptationResult, SessionRecord
from .plan_adapter import PlanAdapter
from .plan_lifecycle import AdvanceOutcome, PlanLifecycleManager
from .repositories import CatalogRepository, PlanRepository, catalog_repository, plan_repository

logger = logging.getLogger(__name__)


@dataclass
class SessionReport:
    session: SessionRecord
    mastered: bool
    advanced: List[AdvanceOutcome] = field(default_factory=list)
    eta_updates: List[ETAUpdate] = field(default_factory=list)
    adaptations: List[AdaptationResult] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def advanced_plan_ids(self) -> List[str]:
        return [outcome.plan_id for outcome in self.advanced if outcome.advanced]


class SessionReporter:
    def __init__(
        self,
        *,
        lifecycle: PlanLifecycleManager,
        eta: ETACalculator,
        adapter: PlanAdapter,
        catalog: CatalogRepository = catalog_repository,
        plans: PlanRepository = plan_repository,
    ) -> None:
        self._lifecycle = lifecycle
        self._eta = eta
        self._adapter = adapter
        self._catalog = catalog
        self._plans = plans

    def on_session_completed(
        self,
        session: Session,
        *,
        student_id: str,
        session_id: str,
        concept_code: str,
        duration_seconds: int,
        questions_answered: int = 0,
        correct_answers: int = 0,
        mastery_probability: Optional[float] = None,
        started_at: Optional[datetime] = None,
    ) -> SessionReport:
        if self._catalog.get_student(session, student_id) is None:
            raise StudentNotFoundError(student_id)

        now = utcnow()
        record = self._catalog.record_session(
            session,
            SessionRecord(
                id=session_id,
                student_id=student_id,
                concept_code=concept_code,
                state="COMPLETED",
                started_at=ensure_utc(started_at) or now - timedelta(seconds=max(duration_seconds, 0)),
                duration_seconds=duration_seconds,
                questions_answered=questions_answered,
                correct_answers=correct_answers,
            ),
        )
        if mastery_probability is not None:
            self._catalog.record_mastery(session, student_id, concept_code, mastery_probability, practiced_at=now)

        probability = self._catalog.mastery_of(session, student_id, [concept_code]).get(concept_code, 0.0)
        report = SessionReport(session=record, mastered=probability >= MASTERY_THRESHOLD)
        logger.info(
            "Session %s for %s on %s: %ds, mastery %.2f",
            session_id,
            student_id,
            concept_code,
            duration_seconds,
            probability,
        )

        if report.mastered:
            hours = max(duration_seconds, 0) / 3600
            for plan in self._plans.list_for_student(session, student_id, statuses=("ACTIVE",)):
                if concept_code in plan.concept_sequence:
                    report.advanced.append(
                        self._lifecycle.advance_after_mastery(session, plan.id, concept_code, hours)
                    )

        try:
            report.eta_updates = self._eta.update_plans_after_session(session, student_id, session_id)
        except Exception:  # noqa: BLE001
            logger.exception("ETA recalculation failed after session %s", session_id)

        try:
            summary = self._adapter.adapt_plans_after_session(session, student_id, session_id)
        except Exception:  # noqa: BLE001
            logger.exception("Plan adaptation failed after session %s", session_id)
        else:
            report.adaptations = summary.adaptations
            report.message = summary.message
        return report


__all__ = ["SessionReport", "SessionReporter"]
