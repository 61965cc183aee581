"""Weekly milestone check endpoints: start an attempt, answer, complete."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .api_models import (
    AnswerFeedbackPayload,
    ETAUpdatePayload,
    MilestoneAnswerRequest,
    MilestoneAnswerResponse,
    MilestoneCompleteRequest,
    MilestoneCompleteResponse,
    MilestoneStartRequest,
    MilestoneStartResponse,
    OptionPayload,
    ProgressPayload,
    QuestionPayload,
)
from .clock import ensure_utc, utcnow
from .db import get_session_dependency
from .dependencies import get_eta_calculator, get_milestone_assessor
from .errors import MilestoneAlreadyEvaluatedError, PlannerError
from .eta_calculator import ETACalculator
from .milestone_assessor import MilestoneAssessor
from .milestone_models import MilestoneQuestion, MilestoneSession

router = APIRouter(prefix="/api/milestones", tags=["milestones"])
logger = logging.getLogger(__name__)

CORRECT_MESSAGES = (
    "Nice work!",
    "That's right! Keep it up!",
    "Correct! You're doing great!",
    "Nailed it!",
    "Perfect! You really know this!",
)
INCORRECT_MESSAGES = (
    "Not quite, but that's okay! Let's review \"{title}\" after the check.",
    "Good try! \"{title}\" can be tricky.",
    "Almost there! We'll practice more \"{title}\" soon.",
    "No worries! Everyone finds \"{title}\" challenging at first.",
)


def correct_message(answered: int, total: int) -> str:
    if total - answered == 0:
        return "Last question, nailed it!"
    return CORRECT_MESSAGES[answered % len(CORRECT_MESSAGES)]


def incorrect_message(concept_title: str, answered: int) -> str:
    return INCORRECT_MESSAGES[answered % len(INCORRECT_MESSAGES)].format(title=concept_title)


def format_duration(seconds: int) -> str:
    minutes, remainder = divmod(max(seconds, 0), 60)
    if minutes:
        return f"{minutes}m {remainder}s"
    return f"{remainder}s"


def _question_payload(question: MilestoneQuestion) -> QuestionPayload:
    """Strip the answer key before a question leaves the server."""
    return QuestionPayload(
        question_id=question.question_id,
        concept_code=question.concept_code,
        concept_title=question.concept_title,
        question_text=question.question_text,
        options=[OptionPayload(id=option.id, text=option.text) for option in question.options],
    )


def _progress(attempt: MilestoneSession) -> ProgressPayload:
    return ProgressPayload(answered=len(attempt.answers), total=len(attempt.questions))


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, MilestoneAlreadyEvaluatedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("/start", response_model=MilestoneStartResponse)
def start_milestone(
    payload: MilestoneStartRequest,
    session: Session = Depends(get_session_dependency),
    assessor: MilestoneAssessor = Depends(get_milestone_assessor),
) -> MilestoneStartResponse:
    try:
        attempt = assessor.start(session, payload.plan_id, payload.week_number)
    except (LookupError, PlannerError) as exc:
        raise _translate(exc) from exc

    first = attempt.questions[0]
    return MilestoneStartResponse(
        plan_id=attempt.plan_id,
        week_number=attempt.week_number,
        student_id=attempt.student_id,
        question=_question_payload(first),
        progress=_progress(attempt),
        time_limit_seconds=attempt.time_limit_seconds,
        concepts_covered=attempt.concepts_covered,
    )


@router.post("/answer", response_model=MilestoneAnswerResponse)
def answer_milestone_question(
    payload: MilestoneAnswerRequest,
    assessor: MilestoneAssessor = Depends(get_milestone_assessor),
) -> MilestoneAnswerResponse:
    try:
        attempt, question, answer = assessor.answer(
            payload.plan_id,
            payload.week_number,
            payload.student_id,
            payload.question_id,
            payload.selected_option_id,
            response_time_ms=payload.response_time_ms,
        )
    except (LookupError, PlannerError) as exc:
        raise _translate(exc) from exc

    answered = len(attempt.answers)
    total = len(attempt.questions)
    if answer.is_correct:
        message = correct_message(answered, total)
    else:
        message = incorrect_message(question.concept_title, answered)
    feedback = AnswerFeedbackPayload(
        was_correct=answer.is_correct,
        correct_option_id=question.correct_option_id(),
        explanation=question.explanation,
        message=message,
    )

    upcoming: Optional[MilestoneQuestion] = attempt.next_unanswered()
    return MilestoneAnswerResponse(
        status="next" if upcoming is not None else "complete",
        feedback=feedback,
        question=_question_payload(upcoming) if upcoming is not None else None,
        progress=_progress(attempt),
    )


@router.post("/complete", response_model=MilestoneCompleteResponse)
def complete_milestone(
    payload: MilestoneCompleteRequest,
    session: Session = Depends(get_session_dependency),
    assessor: MilestoneAssessor = Depends(get_milestone_assessor),
    eta: ETACalculator = Depends(get_eta_calculator),
) -> MilestoneCompleteResponse:
    try:
        evaluation, result, attempt = assessor.complete(
            session, payload.plan_id, payload.week_number, payload.student_id
        )
    except (LookupError, PlannerError) as exc:
        raise _translate(exc) from exc

    eta_update: Optional[ETAUpdatePayload] = None
    try:
        update = eta.recalculate_plan_eta(session, payload.plan_id)
    except Exception:  # noqa: BLE001
        logger.exception("ETA recalculation failed after milestone for plan %s", payload.plan_id)
    else:
        if update is not None:
            eta_update = ETAUpdatePayload(
                projected_completion=update.projected_completion,
                days_difference=update.days_difference,
                is_ahead_of_schedule=update.is_ahead_of_schedule,
                schedule_message=update.schedule_message,
                insight=update.insight,
            )

    started_at = ensure_utc(attempt.started_at)
    elapsed = int((utcnow() - started_at).total_seconds()) if started_at else 0
    return MilestoneCompleteResponse(
        **evaluation.model_dump(),
        result_id=result.id,
        time_taken_seconds=elapsed,
        time_taken_formatted=format_duration(elapsed),
        eta_update=eta_update,
    )
