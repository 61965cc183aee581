"""Domain models shared by the planner services and HTTP layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

PlanStatus = Literal["ACTIVE", "PAUSED", "COMPLETED", "ABANDONED"]
GoalCategory = Literal["GRADE_PROFICIENCY", "EXAM_PREP", "SKILL_BUILDING", "CUSTOM"]

MASTERY_THRESHOLD = 0.85


class Concept(BaseModel):
    code: str
    title: str
    description: str = ""
    domain: str = ""
    subject: str = "MATH"
    grade_level: str
    difficulty: int = Field(..., ge=1, le=10)


class Student(BaseModel):
    id: str
    display_name: str
    grade_level: str


class LearningGoal(BaseModel):
    id: str
    name: str
    description: str = ""
    category: GoalCategory = "CUSTOM"
    grade_level: Optional[str] = None
    estimated_hours: float = 0.0
    required_concept_codes: List[str] = Field(default_factory=list)


class SessionRecord(BaseModel):
    """A completed (or in-flight) learning session as seen by the planner."""

    id: str
    student_id: str
    concept_code: Optional[str] = None
    state: str = "COMPLETED"
    started_at: datetime
    duration_seconds: Optional[int] = None
    questions_answered: int = 0
    correct_answers: int = 0


class WeeklyMilestone(BaseModel):
    week_number: int
    concepts: List[str] = Field(default_factory=list)
    concept_titles: List[str] = Field(default_factory=list)
    estimated_hours: float = 0.0
    cumulative_progress: int = 0
    milestone_check: bool = True


class LearningPlan(BaseModel):
    id: str
    student_id: str
    goal_id: str
    status: PlanStatus = "ACTIVE"
    concept_sequence: List[str] = Field(default_factory=list)
    concept_estimates: dict[str, float] = Field(default_factory=dict)
    current_index: int = 0
    total_estimated_hours: float = 0.0
    hours_completed: float = 0.0
    weekly_milestones: List[WeeklyMilestone] = Field(default_factory=list)
    narrative: str = ""
    target_completion_date: Optional[datetime] = None
    projected_completion_date: datetime
    is_ahead_of_schedule: bool = True
    velocity_hours_per_week: float = 0.0
    last_recalculated_at: datetime
    created_at: Optional[datetime] = None

    @property
    def concepts_total(self) -> int:
        return len(self.concept_sequence)

    def milestone_for_week(self, week_number: int) -> Optional[WeeklyMilestone]:
        for milestone in self.weekly_milestones:
            if milestone.week_number == week_number:
                return milestone
        return None


class MilestoneResult(BaseModel):
    id: str
    plan_id: str
    week_number: int
    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    concepts_tested: List[str] = Field(default_factory=list)
    completed_at: datetime


class ETASnapshot(BaseModel):
    id: str
    plan_id: str
    concepts_remaining: int
    concepts_mastered: int
    hours_remaining: float
    projected_completion: datetime
    velocity_at_snapshot: float
    is_ahead_of_schedule: bool
    days_difference: int
    insight: str = ""
    recorded_at: datetime


class AdaptationAction(BaseModel):
    rule: str
    description: str
    applied: bool = False
    details: Optional[str] = None


class AdaptationResult(BaseModel):
    plan_id: str
    adaptations_applied: List[AdaptationAction] = Field(default_factory=list)
    message: Optional[str] = None

    @property
    def applied_count(self) -> int:
        return sum(1 for action in self.adaptations_applied if action.applied)


__all__ = [
    "AdaptationAction",
    "AdaptationResult",
    "Concept",
    "ETASnapshot",
    "GoalCategory",
    "LearningGoal",
    "LearningPlan",
    "MASTERY_THRESHOLD",
    "MilestoneResult",
    "PlanStatus",
    "SessionRecord",
    "Student",
    "WeeklyMilestone",
]
