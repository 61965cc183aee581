"""Models describing weekly milestone questions, attempts and evaluations."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal

from pydantic import BaseModel, Field

OptionId = Literal["A", "B", "C", "D"]


class MilestoneOption(BaseModel):
    id: OptionId
    text: str = Field(..., min_length=1)
    is_correct: bool = False


class MilestoneQuestion(BaseModel):
    question_id: str
    concept_code: str
    concept_title: str
    question_text: str
    options: List[MilestoneOption] = Field(default_factory=list)
    explanation: str = ""
    difficulty: int = 1

    def correct_option_id(self) -> str | None:
        for option in self.options:
            if option.is_correct:
                return option.id
        return None


class MilestoneAnswer(BaseModel):
    question_id: str
    selected_option_id: str
    is_correct: bool
    response_time_ms: int = Field(0, ge=0)


class MilestoneSession(BaseModel):
    plan_id: str
    week_number: int
    student_id: str
    questions: List[MilestoneQuestion] = Field(default_factory=list)
    answers: Dict[str, MilestoneAnswer] = Field(default_factory=dict)
    concepts_covered: List[str] = Field(default_factory=list)
    started_at: datetime
    time_limit_seconds: int = 1200

    def question(self, question_id: str) -> MilestoneQuestion | None:
        for question in self.questions:
            if question.question_id == question_id:
                return question
        return None

    def next_unanswered(self) -> MilestoneQuestion | None:
        for question in self.questions:
            if question.question_id not in self.answers:
                return question
        return None


class ConceptResult(BaseModel):
    concept_code: str
    concept_title: str
    correct: int = 0
    total: int = 0
    passed: bool = False


class MilestoneEvaluation(BaseModel):
    passed: bool
    score: int = Field(..., ge=0, le=100)
    total_correct: int = 0
    total_questions: int = 0
    concept_results: List[ConceptResult] = Field(default_factory=list)
    failed_concepts: List[str] = Field(default_factory=list)
    message: str
    encouragement: str


__all__ = [
    "ConceptResult",
    "MilestoneAnswer",
    "MilestoneEvaluation",
    "MilestoneOption",
    "MilestoneQuestion",
    "MilestoneSession",
    "OptionId",
]
