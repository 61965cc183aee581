"""Developer utilities mounted only when LEARNING_GPS_DEBUG_ENDPOINTS is enabled."""

from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .api_models import PlanETAPayload
from .cache import milestone_sessions
from .db import get_session_dependency
from .dependencies import get_eta_calculator
from .eta_calculator import ETACalculator
from .telemetry import emit_event


router = APIRouter(prefix="/api/developer", tags=["developer"])


@router.post("/milestone-sessions/purge")
def purge_milestone_sessions() -> Dict[str, int]:
    purged = milestone_sessions.purge_expired()
    emit_event("developer_milestone_sessions_purged", purged=purged)
    return {"purged": purged}


@router.post("/plans/{plan_id}/recalculate", response_model=PlanETAPayload)
def force_recalculate(
    plan_id: str,
    session: Session = Depends(get_session_dependency),
    eta: ETACalculator = Depends(get_eta_calculator),
) -> PlanETAPayload:
    update = eta.recalculate_plan_eta(session, plan_id)
    if update is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only active plans can be recalculated.",
        )
    return PlanETAPayload(
        plan_id=update.plan_id,
        concepts_mastered=update.concepts_mastered,
        concepts_remaining=update.concepts_remaining,
        progress_percent=update.progress_percent,
        hours_remaining=update.hours_remaining,
        projected_completion=update.projected_completion,
        days_difference=update.days_difference,
        is_ahead_of_schedule=update.is_ahead_of_schedule,
        trend=update.velocity.trend,
        schedule_message=update.schedule_message,
        insight=update.insight,
        completed=update.completed,
    )
