"""Persistence for learning plans, milestone results and ETA snapshots.

Index and status changes are written as conditional UPDATE statements so
concurrent session completions cannot move ``current_index`` backwards or
complete a plan twice.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, Dict, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clock import ensure_utc, utcnow
from ..db.models import ETASnapshotModel, LearningPlanModel, MilestoneResultModel
from ..errors import MilestoneAlreadyEvaluatedError
from ..learning_plan import (
    ETASnapshot,
    LearningPlan,
    MilestoneResult,
    PlanStatus,
    WeeklyMilestone,
)


class PlanRepository:
    def create(
        self,
        session: Session,
        *,
        student_id: str,
        goal_id: str,
        concept_sequence: List[str],
        concept_estimates: Dict[str, float],
        current_index: int,
        total_estimated_hours: float,
        weekly_milestones: List[WeeklyMilestone],
        narrative: str,
        projected_completion_date: datetime,
        target_completion_date: Optional[datetime],
        velocity_hours_per_week: float,
    ) -> LearningPlan:
        model = LearningPlanModel(
            student_id=student_id,
            goal_id=goal_id,
            status="ACTIVE",
            concept_sequence=list(concept_sequence),
            concept_estimates=dict(concept_estimates),
            current_index=current_index,
            total_estimated_hours=total_estimated_hours,
            hours_completed=0.0,
            weekly_milestones=[milestone.model_dump(mode="json") for milestone in weekly_milestones],
            narrative=narrative,
            projected_completion_date=projected_completion_date,
            target_completion_date=target_completion_date,
            is_ahead_of_schedule=True,
            velocity_hours_per_week=velocity_hours_per_week,
            last_recalculated_at=utcnow(),
        )
        session.add(model)
        session.flush()
        return self._to_domain(model)

    def get(self, session: Session, plan_id: str) -> LearningPlan | None:
        model = self._get_model(session, plan_id)
        return self._to_domain(model) if model else None

    def list_for_student(
        self,
        session: Session,
        student_id: str,
        *,
        statuses: Optional[Collection[PlanStatus]] = None,
    ) -> List[LearningPlan]:
        stmt = (
            select(LearningPlanModel)
            .where(LearningPlanModel.student_id == student_id)
            .order_by(LearningPlanModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if statuses:
            stmt = stmt.where(LearningPlanModel.status.in_(list(statuses)))
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def count_active(self, session: Session, student_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(LearningPlanModel)
            .where(LearningPlanModel.student_id == student_id)
            .where(LearningPlanModel.status == "ACTIVE")
        )
        return int(session.execute(stmt).scalar_one())

    def find_active_for_goal(self, session: Session, student_id: str, goal_id: str) -> LearningPlan | None:
        stmt = (
            select(LearningPlanModel)
            .where(LearningPlanModel.student_id == student_id)
            .where(LearningPlanModel.goal_id == goal_id)
            .where(LearningPlanModel.status == "ACTIVE")
            .limit(1)
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._to_domain(model) if model else None

    def goal_name(self, session: Session, plan_id: str) -> str:
        model = self._get_model(session, plan_id)
        if model is None or model.goal is None:
            return ""
        return model.goal.name

    def transition_status(
        self,
        session: Session,
        plan_id: str,
        *,
        from_statuses: Collection[PlanStatus],
        to_status: PlanStatus,
    ) -> bool:
        """Move the plan to ``to_status`` only if it is currently in ``from_statuses``."""
        values: Dict[str, Any] = {"status": to_status, "updated_at": utcnow()}
        if to_status == "ACTIVE":
            values["last_recalculated_at"] = utcnow()
        stmt = (
            update(LearningPlanModel)
            .where(LearningPlanModel.id == plan_id)
            .where(LearningPlanModel.status.in_(list(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1

    def advance_index(
        self,
        session: Session,
        plan_id: str,
        *,
        expected_index: int,
        new_index: int,
        hours_delta: float,
        complete: bool,
    ) -> bool:
        """Compare-and-swap on ``current_index``; False when another writer got there first."""
        now = utcnow()
        stmt = (
            update(LearningPlanModel)
            .where(LearningPlanModel.id == plan_id)
            .where(LearningPlanModel.current_index == expected_index)
            .where(LearningPlanModel.status == "ACTIVE")
            .values(
                current_index=new_index,
                hours_completed=LearningPlanModel.hours_completed + hours_delta,
                status="COMPLETED" if complete else "ACTIVE",
                last_recalculated_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1

    def update_target_date(self, session: Session, plan_id: str, target: datetime) -> None:
        stmt = (
            update(LearningPlanModel)
            .where(LearningPlanModel.id == plan_id)
            .values(target_completion_date=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.execute(stmt)

    def apply_eta(
        self,
        session: Session,
        plan_id: str,
        *,
        mastered_count: int,
        hours_completed: float,
        projected_completion_date: datetime,
        velocity_hours_per_week: float,
        is_ahead_of_schedule: bool,
    ) -> bool:
        """Store a recalculated projection on an ACTIVE plan; ``current_index`` only moves forward."""
        now = utcnow()
        stmt = (
            update(LearningPlanModel)
            .where(LearningPlanModel.id == plan_id)
            .where(LearningPlanModel.status == "ACTIVE")
            .values(
                current_index=case(
                    (LearningPlanModel.current_index < mastered_count, mastered_count),
                    else_=LearningPlanModel.current_index,
                ),
                hours_completed=max(hours_completed, 0.0),
                projected_completion_date=projected_completion_date,
                velocity_hours_per_week=velocity_hours_per_week,
                is_ahead_of_schedule=is_ahead_of_schedule,
                last_recalculated_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1

    def create_milestone_result(
        self,
        session: Session,
        *,
        plan_id: str,
        week_number: int,
        passed: bool,
        score: float,
        concepts_tested: List[str],
    ) -> MilestoneResult:
        model = MilestoneResultModel(
            plan_id=plan_id,
            week_number=week_number,
            passed=passed,
            score=score,
            concepts_tested=list(concepts_tested),
            completed_at=utcnow(),
        )
        session.add(model)
        try:
            session.flush()
        except IntegrityError as exc:
            raise MilestoneAlreadyEvaluatedError(week_number) from exc
        return self._result(model)

    def get_milestone_result(self, session: Session, plan_id: str, week_number: int) -> MilestoneResult | None:
        stmt = (
            select(MilestoneResultModel)
            .where(MilestoneResultModel.plan_id == plan_id)
            .where(MilestoneResultModel.week_number == week_number)
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._result(model) if model else None

    def recent_milestone_results(
        self,
        session: Session,
        plan_id: str,
        *,
        passed: Optional[bool] = None,
        limit: int = 3,
    ) -> List[MilestoneResult]:
        stmt = select(MilestoneResultModel).where(MilestoneResultModel.plan_id == plan_id)
        if passed is not None:
            stmt = stmt.where(MilestoneResultModel.passed == passed)
        stmt = stmt.order_by(MilestoneResultModel.completed_at.desc()).limit(limit)
        return [self._result(model) for model in session.execute(stmt).scalars()]

    def create_eta_snapshot(
        self,
        session: Session,
        *,
        plan_id: str,
        triggered_by_session_id: Optional[str],
        concepts_remaining: int,
        concepts_mastered: int,
        hours_remaining: float,
        projected_completion: datetime,
        velocity_at_snapshot: float,
        is_ahead_of_schedule: bool,
        days_difference: int,
        insight: str,
    ) -> ETASnapshot:
        model = ETASnapshotModel(
            plan_id=plan_id,
            triggered_by_session_id=triggered_by_session_id,
            concepts_remaining=concepts_remaining,
            concepts_mastered=concepts_mastered,
            hours_remaining=hours_remaining,
            projected_completion=projected_completion,
            velocity_at_snapshot=velocity_at_snapshot,
            is_ahead_of_schedule=is_ahead_of_schedule,
            days_difference=days_difference,
            insight=insight,
            recorded_at=utcnow(),
        )
        session.add(model)
        session.flush()
        return self._snapshot(model)

    def eta_history(self, session: Session, plan_id: str, *, limit: int = 20) -> List[ETASnapshot]:
        """Latest ``limit`` snapshots in chronological order."""
        stmt = (
            select(ETASnapshotModel)
            .where(ETASnapshotModel.plan_id == plan_id)
            .order_by(ETASnapshotModel.recorded_at.desc())
            .limit(limit)
        )
        snapshots = [self._snapshot(model) for model in session.execute(stmt).scalars()]
        snapshots.reverse()
        return snapshots

    def _get_model(self, session: Session, plan_id: str) -> LearningPlanModel | None:
        stmt = (
            select(LearningPlanModel)
            .where(LearningPlanModel.id == plan_id)
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_domain(model: LearningPlanModel) -> LearningPlan:
        return LearningPlan(
            id=model.id,
            student_id=model.student_id,
            goal_id=model.goal_id,
            status=model.status,  # type: ignore[arg-type]
            concept_sequence=list(model.concept_sequence or []),
            concept_estimates=dict(model.concept_estimates or {}),
            current_index=model.current_index,
            total_estimated_hours=model.total_estimated_hours,
            hours_completed=model.hours_completed,
            weekly_milestones=[WeeklyMilestone.model_validate(item) for item in model.weekly_milestones or []],
            narrative=model.narrative,
            target_completion_date=ensure_utc(model.target_completion_date),
            projected_completion_date=ensure_utc(model.projected_completion_date),
            is_ahead_of_schedule=model.is_ahead_of_schedule,
            velocity_hours_per_week=model.velocity_hours_per_week,
            last_recalculated_at=ensure_utc(model.last_recalculated_at),
            created_at=ensure_utc(model.created_at),
        )

    @staticmethod
    def _result(model: MilestoneResultModel) -> MilestoneResult:
        return MilestoneResult(
            id=model.id,
            plan_id=model.plan_id,
            week_number=model.week_number,
            passed=model.passed,
            score=model.score,
            concepts_tested=list(model.concepts_tested or []),
            completed_at=ensure_utc(model.completed_at),
        )

    @staticmethod
    def _snapshot(model: ETASnapshotModel) -> ETASnapshot:
        return ETASnapshot(
            id=model.id,
            plan_id=model.plan_id,
            concepts_remaining=model.concepts_remaining,
            concepts_mastered=model.concepts_mastered,
            hours_remaining=model.hours_remaining,
            projected_completion=ensure_utc(model.projected_completion),
            velocity_at_snapshot=model.velocity_at_snapshot,
            is_ahead_of_schedule=model.is_ahead_of_schedule,
            days_difference=model.days_difference,
            insight=model.insight,
            recorded_at=ensure_utc(model.recorded_at),
        )


plan_repository = PlanRepository()

__all__ = ["PlanRepository", "plan_repository"]
