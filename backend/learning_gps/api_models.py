"""Request and response payloads for the planner HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from .learning_plan import (
    AdaptationResult,
    ETASnapshot,
    LearningPlan,
    MilestoneResult,
    PlanStatus,
    WeeklyMilestone,
)
from .milestone_models import ConceptResult

MIN_WEEKLY_HOURS = 0.5
MAX_WEEKLY_HOURS = 40.0


class CreatePlanRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    goal_id: str = Field(..., min_length=1)
    weekly_hours: Optional[float] = Field(default=None, ge=MIN_WEEKLY_HOURS, le=MAX_WEEKLY_HOURS)
    target_date: Optional[datetime] = None


class CreatePlanResponse(BaseModel):
    plan_id: str
    concept_sequence: List[str]
    total_estimated_hours: float
    projected_completion_date: datetime
    weekly_milestones: List[WeeklyMilestone]
    narrative: str
    concepts_already_mastered: int
    concepts_remaining: int


class PlanPayload(BaseModel):
    plan: LearningPlan
    goal_name: str
    progress_percent: int
    recent_milestones: List[MilestoneResult] = Field(default_factory=list)


class PlanListSummaryPayload(BaseModel):
    total: int
    active: int
    paused: int
    completed: int
    abandoned: int
    can_add_more: bool
    slots_remaining: int


class PlanListResponse(BaseModel):
    plans: List[PlanPayload]
    summary: PlanListSummaryPayload


class NextConceptPayload(BaseModel):
    code: str
    title: str
    description: str
    estimated_hours: float
    position: int
    total: int


class NextConceptResponse(BaseModel):
    plan_id: str
    next_concept: Optional[NextConceptPayload] = None


class ETAHistoryResponse(BaseModel):
    plan_id: str
    snapshots: List[ETASnapshot]


class MasterySummaryResponse(BaseModel):
    student_id: str
    goal_id: str
    total: int
    mastered: int
    developing: int
    novice: int
    overall_progress: int


class PlanActionRequest(BaseModel):
    action: Literal["pause", "resume", "abandon", "update_target_date"]
    target_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _target_date_required(self) -> "PlanActionRequest":
        if self.action == "update_target_date" and self.target_date is None:
            raise ValueError("target_date is required for update_target_date")
        return self


class PlanActionResponse(BaseModel):
    success: bool = True
    status: PlanStatus
    message: str
    plan: LearningPlan


class MilestoneStartRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    week_number: int = Field(..., ge=1, le=100)


class OptionPayload(BaseModel):
    id: str
    text: str


class QuestionPayload(BaseModel):
    question_id: str
    concept_code: str
    concept_title: str
    question_text: str
    options: List[OptionPayload]


class ProgressPayload(BaseModel):
    answered: int
    total: int


class MilestoneStartResponse(BaseModel):
    plan_id: str
    week_number: int
    student_id: str
    question: QuestionPayload
    progress: ProgressPayload
    time_limit_seconds: int
    concepts_covered: List[str]


class MilestoneAnswerRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    week_number: int = Field(..., ge=1, le=100)
    student_id: str = Field(..., min_length=1)
    question_id: str = Field(..., min_length=1)
    selected_option_id: Literal["A", "B", "C", "D"]
    response_time_ms: int = Field(default=0, ge=0)


class AnswerFeedbackPayload(BaseModel):
    was_correct: bool
    correct_option_id: Optional[str] = None
    explanation: str
    message: str


class MilestoneAnswerResponse(BaseModel):
    status: Literal["next", "complete"]
    feedback: AnswerFeedbackPayload
    question: Optional[QuestionPayload] = None
    progress: ProgressPayload


class MilestoneCompleteRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    week_number: int = Field(..., ge=1, le=100)
    student_id: str = Field(..., min_length=1)


class ETAUpdatePayload(BaseModel):
    projected_completion: datetime
    days_difference: int
    is_ahead_of_schedule: bool
    schedule_message: str
    insight: str


class MilestoneCompleteResponse(BaseModel):
    passed: bool
    score: int
    total_correct: int
    total_questions: int
    concept_results: List[ConceptResult]
    failed_concepts: List[str]
    message: str
    encouragement: str
    result_id: str
    time_taken_seconds: int
    time_taken_formatted: str
    eta_update: Optional[ETAUpdatePayload] = None


class SessionCompletedRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    concept_code: str = Field(..., min_length=1)
    duration_seconds: int = Field(..., ge=0)
    questions_answered: int = Field(default=0, ge=0)
    correct_answers: int = Field(default=0, ge=0)
    mastery_probability: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    started_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _correct_within_answered(self) -> "SessionCompletedRequest":
        if self.correct_answers > self.questions_answered:
            raise ValueError("correct_answers cannot exceed questions_answered")
        return self


class PlanETAPayload(BaseModel):
    plan_id: str
    concepts_mastered: int
    concepts_remaining: int
    progress_percent: int
    hours_remaining: float
    projected_completion: datetime
    days_difference: int
    is_ahead_of_schedule: bool
    trend: str
    schedule_message: str
    insight: str
    completed: bool


class SessionCompletedResponse(BaseModel):
    session_id: str
    mastered: bool
    advanced_plan_ids: List[str]
    eta_updates: List[PlanETAPayload]
    adaptations: List[AdaptationResult]
    message: Optional[str] = None
