"""Plan creation, listing and management endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .api_models import (
    CreatePlanRequest,
    CreatePlanResponse,
    ETAHistoryResponse,
    MasterySummaryResponse,
    NextConceptPayload,
    NextConceptResponse,
    PlanActionRequest,
    PlanActionResponse,
    PlanListResponse,
    PlanListSummaryPayload,
    PlanPayload,
)
from .config import Settings, get_settings
from .db import get_session_dependency
from .dependencies import get_eta_calculator, get_lifecycle, get_plan_builder
from .errors import DuplicatePlanError, PlanLimitExceededError, PlannerError
from .eta_calculator import ETACalculator
from .plan_builder import PlanBuilder
from .plan_lifecycle import PlanLifecycleManager
from .plan_queries import get_mastery_summary, get_next_concept, list_plans
from .repositories import plan_repository
from .rounding import round_percent

router = APIRouter(prefix="/api/plans", tags=["plans"])
logger = logging.getLogger(__name__)

ETA_HISTORY_LIMIT = 20


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("", response_model=CreatePlanResponse, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: CreatePlanRequest,
    session: Session = Depends(get_session_dependency),
    settings: Settings = Depends(get_settings),
    builder: PlanBuilder = Depends(get_plan_builder),
) -> CreatePlanResponse:
    active = plan_repository.count_active(session, payload.student_id)
    if active >= settings.max_active_plans:
        raise _conflict(PlanLimitExceededError(active, settings.max_active_plans))
    existing = plan_repository.find_active_for_goal(session, payload.student_id, payload.goal_id)
    if existing is not None:
        raise _conflict(DuplicatePlanError(existing.id))

    weekly_hours = payload.weekly_hours if payload.weekly_hours is not None else settings.default_weekly_hours
    try:
        result = builder.build_plan(
            session,
            payload.goal_id,
            payload.student_id,
            weekly_hours,
            payload.target_date,
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PlannerError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    plan = result.plan
    return CreatePlanResponse(
        plan_id=plan.id,
        concept_sequence=plan.concept_sequence,
        total_estimated_hours=plan.total_estimated_hours,
        projected_completion_date=result.projected_completion_date,
        weekly_milestones=result.weekly_milestones,
        narrative=result.narrative,
        concepts_already_mastered=result.concepts_already_mastered,
        concepts_remaining=result.concepts_remaining,
    )


@router.get("", response_model=PlanListResponse)
def list_student_plans(
    student_id: str = Query(..., min_length=1),
    plan_status: Optional[str] = Query(default=None, alias="status"),
    session: Session = Depends(get_session_dependency),
    settings: Settings = Depends(get_settings),
) -> PlanListResponse:
    statuses = [value.strip().upper() for value in plan_status.split(",")] if plan_status else None
    listing = list_plans(
        session,
        student_id,
        max_active_plans=settings.max_active_plans,
        statuses=statuses,
    )
    return PlanListResponse(
        plans=[
            PlanPayload(
                plan=summary.plan,
                goal_name=summary.goal_name,
                progress_percent=summary.progress_percent,
                recent_milestones=summary.recent_milestones,
            )
            for summary in listing.plans
        ],
        summary=PlanListSummaryPayload(
            total=listing.counts["total"],
            active=listing.counts["ACTIVE"],
            paused=listing.counts["PAUSED"],
            completed=listing.counts["COMPLETED"],
            abandoned=listing.counts["ABANDONED"],
            can_add_more=listing.can_add_more,
            slots_remaining=listing.slots_remaining,
        ),
    )


@router.get("/mastery", response_model=MasterySummaryResponse)
def get_goal_mastery(
    student_id: str = Query(..., min_length=1),
    goal_id: str = Query(..., min_length=1),
    session: Session = Depends(get_session_dependency),
) -> MasterySummaryResponse:
    try:
        summary = get_mastery_summary(session, student_id, goal_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return MasterySummaryResponse(student_id=student_id, goal_id=goal_id, **summary.__dict__)


@router.get("/{plan_id}", response_model=PlanPayload)
def get_plan(plan_id: str, session: Session = Depends(get_session_dependency)) -> PlanPayload:
    plan = plan_repository.get(session, plan_id)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found.")
    return PlanPayload(
        plan=plan,
        goal_name=plan_repository.goal_name(session, plan_id),
        progress_percent=round_percent(plan.current_index, len(plan.concept_sequence)),
        recent_milestones=plan_repository.recent_milestone_results(session, plan_id),
    )


@router.get("/{plan_id}/next", response_model=NextConceptResponse)
def get_plan_next_concept(plan_id: str, session: Session = Depends(get_session_dependency)) -> NextConceptResponse:
    try:
        concept = get_next_concept(session, plan_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    payload = NextConceptPayload(**concept.__dict__) if concept is not None else None
    return NextConceptResponse(plan_id=plan_id, next_concept=payload)


@router.get("/{plan_id}/eta-history", response_model=ETAHistoryResponse)
def get_plan_eta_history(
    plan_id: str,
    limit: int = Query(default=ETA_HISTORY_LIMIT, ge=1, le=100),
    session: Session = Depends(get_session_dependency),
    eta: ETACalculator = Depends(get_eta_calculator),
) -> ETAHistoryResponse:
    if plan_repository.get(session, plan_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found.")
    return ETAHistoryResponse(plan_id=plan_id, snapshots=eta.get_eta_history(session, plan_id, limit=limit))


@router.post("/{plan_id}/actions", response_model=PlanActionResponse)
def manage_plan(
    plan_id: str,
    payload: PlanActionRequest,
    session: Session = Depends(get_session_dependency),
    lifecycle: PlanLifecycleManager = Depends(get_lifecycle),
) -> PlanActionResponse:
    goal_name = plan_repository.goal_name(session, plan_id)
    try:
        if payload.action == "pause":
            plan = lifecycle.pause(session, plan_id)
            message = f'"{goal_name}" has been paused. You can resume anytime.'
        elif payload.action == "resume":
            plan = lifecycle.resume(session, plan_id)
            message = f'"{goal_name}" is back on track! Let\'s keep going.'
        elif payload.action == "abandon":
            plan = lifecycle.abandon(session, plan_id)
            message = f'"{goal_name}" has been abandoned. Your progress has been saved.'
        else:
            plan = lifecycle.update_target_date(session, plan_id, payload.target_date)
            message = f"Target date updated to {plan.target_completion_date.date().isoformat()}."
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PlanLimitExceededError as exc:
        raise _conflict(exc) from exc
    except PlannerError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("Plan %s action %s applied", plan_id, payload.action)
    return PlanActionResponse(status=plan.status, message=message, plan=plan)
