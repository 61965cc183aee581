"""Inbound hook for learning sessions completed by the tutoring system."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .api_models import PlanETAPayload, SessionCompletedRequest, SessionCompletedResponse
from .db import get_session_dependency
from .dependencies import get_session_reporter
from .session_reporting import SessionReporter

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("/completed", response_model=SessionCompletedResponse)
def session_completed(
    payload: SessionCompletedRequest,
    session: Session = Depends(get_session_dependency),
    reporter: SessionReporter = Depends(get_session_reporter),
) -> SessionCompletedResponse:
    try:
        report = reporter.on_session_completed(session, **payload.model_dump())
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return SessionCompletedResponse(
        session_id=report.session.id,
        mastered=report.mastered,
        advanced_plan_ids=report.advanced_plan_ids,
        eta_updates=[
            PlanETAPayload(
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
            for update in report.eta_updates
        ],
        adaptations=report.adaptations,
        message=report.message,
    )
