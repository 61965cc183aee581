"""Weekly milestone knowledge checks: question generation, answering and evaluation."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from .cache import MilestoneSessionStore, milestone_sessions
from .clock import ensure_utc, utcnow
from .errors import (
    MilestoneAlreadyEvaluatedError,
    MilestoneAttemptNotFoundError,
    MilestoneNotFoundError,
    MilestoneSessionError,
    PlanNotFoundError,
    PlanStateError,
)
from .learning_plan import Concept, MilestoneResult, Student
from .milestone_models import (
    ConceptResult,
    MilestoneAnswer,
    MilestoneEvaluation,
    MilestoneOption,
    MilestoneQuestion,
    MilestoneSession,
)
from .repositories import CatalogRepository, PlanRepository, catalog_repository, plan_repository
from .rounding import round_percent
from .telemetry import emit_event
from .text_generation import TextGenerator, request_structured

logger = logging.getLogger(__name__)

QUESTIONS_PER_MILESTONE = 8
QUESTIONS_PER_CONCEPT = 2
PASS_THRESHOLD = 0.75
CONCEPT_PASS_THRESHOLD = 0.5
TIME_LIMIT_SECONDS = 1200
QUESTION_MAX_TOKENS = 1024


class GeneratedOption(BaseModel):
    id: str
    text: str = Field(..., min_length=1)
    isCorrect: bool = False


class GeneratedQuestion(BaseModel):
    questionText: str = Field(..., min_length=1)
    options: List[GeneratedOption]
    explanation: str = ""

    @field_validator("options")
    @classmethod
    def _exactly_one_correct(cls, options: List[GeneratedOption]) -> List[GeneratedOption]:
        if len(options) != 4:
            raise ValueError("expected exactly 4 options")
        if sum(1 for option in options if option.isCorrect) != 1:
            raise ValueError("expected exactly one correct option")
        return options


class GeneratedQuestionSet(BaseModel):
    questions: List[GeneratedQuestion] = Field(..., min_length=1)


@dataclass(frozen=True)
class GeneratedMilestone:
    questions: List[MilestoneQuestion]
    concepts_covered: List[str]
    student_id: str


def _question_prompt(concept: Concept, student: Student, count: int) -> str:
    plural = "s" if count > 1 else ""
    return (
        f"Generate {count} multiple-choice assessment question{plural} for a weekly milestone check.\n\n"
        "CONCEPT:\n"
        f"- Code: {concept.code}\n"
        f"- Title: {concept.title}\n"
        f"- Description: {concept.description}\n"
        f"- Subject: {concept.subject}\n"
        f"- Grade Level: {concept.grade_level}\n"
        f"- Domain: {concept.domain}\n"
        f"- Difficulty: {concept.difficulty}/10\n\n"
        f"STUDENT: {student.display_name} ({student.grade_level})\n\n"
        "REQUIREMENTS:\n"
        "1. Each question tests understanding of the concept, not just recall\n"
        "2. Include one straightforward question and one that requires application\n"
        "3. Each question has exactly 4 answer options (A, B, C, D)\n"
        "4. Exactly one option is correct per question\n"
        "5. Distractors should be plausible mistakes, not obviously wrong\n"
        "6. Include a brief explanation of the correct answer\n\n"
        "Respond with JSON:\n"
        '{"questions": [{"questionText": "...", "options": [{"id": "A", "text": "...", "isCorrect": false}, '
        '{"id": "B", "text": "...", "isCorrect": true}, {"id": "C", "text": "...", "isCorrect": false}, '
        '{"id": "D", "text": "...", "isCorrect": false}], "explanation": "..."}]}'
    )


def fallback_questions(concept: Concept, count: int, *, stamp: Optional[int] = None) -> List[MilestoneQuestion]:
    """Self-assessment questions used when generation is unavailable; option A is keyed correct."""
    stamp = stamp if stamp is not None else int(time.time() * 1000)
    if concept.subject.upper() == "MATH":
        text = f'Which of the following best demonstrates your understanding of "{concept.title}"?'
        choices = (
            "I can explain this concept to a friend",
            "I've heard of it but I'm not sure about the details",
            "I need more practice with this",
            "This is completely new to me",
        )
        explanation = f'Being able to explain "{concept.title}" shows solid understanding.'
    else:
        text = f'How confident are you with "{concept.title}"?'
        choices = (
            "Very confident, I can use it correctly",
            "Somewhat confident but need practice",
            "I recognize it but struggle with it",
            "Not familiar with this yet",
        )
        explanation = f'Confidence with "{concept.title}" comes from regular practice.'

    return [
        MilestoneQuestion(
            question_id=f"{concept.code}-fb{index}-{stamp}",
            concept_code=concept.code,
            concept_title=concept.title,
            question_text=text,
            options=[
                MilestoneOption(id=option_id, text=choice, is_correct=option_id == "A")  # type: ignore[arg-type]
                for option_id, choice in zip("ABCD", choices)
            ],
            explanation=explanation,
            difficulty=concept.difficulty,
        )
        for index in range(1, count + 1)
    ]


def _score_messages(score: int, passed: bool) -> tuple[str, str]:
    if passed:
        if score >= 100:
            return (
                "Perfect score! You've mastered everything this week!",
                "You're on fire! Ready for the next challenge?",
            )
        if score >= 88:
            return (
                "Excellent work! You've passed with flying colors!",
                "Almost perfect. Your hard work is really paying off!",
            )
        return (
            "You passed! Nice work this week.",
            "Keep up the momentum, you're making great progress!",
        )
    if score >= 50:
        return (
            f"You scored {score}%, close to passing! Let's review a few concepts.",
            "You're almost there! A little more practice on the tricky parts will get you over the line.",
        )
    return (
        f"You scored {score}%. Let's spend more time on this week's concepts.",
        "Learning takes time, and extra practice is on the way to help you nail these concepts. You've got this!",
    )


def evaluate_milestone(
    questions: Sequence[MilestoneQuestion],
    answers: Mapping[str, MilestoneAnswer],
) -> MilestoneEvaluation:
    """Score an attempt; unanswered questions count as incorrect."""
    total_correct = 0
    per_concept: Dict[str, ConceptResult] = {}
    for question in questions:
        answer = answers.get(question.question_id)
        correct = bool(answer and answer.is_correct)
        result = per_concept.setdefault(
            question.concept_code,
            ConceptResult(concept_code=question.concept_code, concept_title=question.concept_title),
        )
        result.total += 1
        if correct:
            result.correct += 1
            total_correct += 1

    total_questions = len(questions)
    score = round_percent(total_correct, total_questions)
    passed = total_questions > 0 and score / 100 >= PASS_THRESHOLD
    for result in per_concept.values():
        result.passed = result.total > 0 and result.correct / result.total >= CONCEPT_PASS_THRESHOLD

    message, encouragement = _score_messages(score, passed)
    return MilestoneEvaluation(
        passed=passed,
        score=score,
        total_correct=total_correct,
        total_questions=total_questions,
        concept_results=list(per_concept.values()),
        failed_concepts=[r.concept_code for r in per_concept.values() if not r.passed],
        message=message,
        encouragement=encouragement,
    )


class MilestoneAssessor:
    def __init__(
        self,
        text_generator: TextGenerator,
        *,
        catalog: CatalogRepository = catalog_repository,
        plans: PlanRepository = plan_repository,
        sessions: MilestoneSessionStore = milestone_sessions,
        time_limit_seconds: int = TIME_LIMIT_SECONDS,
    ) -> None:
        self._text_generator = text_generator
        self._catalog = catalog
        self._plans = plans
        self._sessions = sessions
        self._time_limit = time_limit_seconds

    def generate_questions(self, session: Session, plan_id: str, week_number: int) -> GeneratedMilestone:
        plan = self._plans.get(session, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        if plan.status != "ACTIVE":
            raise PlanStateError("Plan is not active.")
        milestone = plan.milestone_for_week(week_number)
        if milestone is None:
            raise MilestoneNotFoundError(plan_id, week_number)
        if self._plans.get_milestone_result(session, plan_id, week_number) is not None:
            raise MilestoneAlreadyEvaluatedError(week_number)
        student = self._catalog.get_student(session, plan.student_id)
        if student is None:
            raise PlanStateError(f"Student for plan '{plan_id}' no longer exists.")

        concepts = self._catalog.get_concepts(session, milestone.concepts)
        ranked = sorted(concepts.values(), key=lambda concept: concept.difficulty, reverse=True)
        primary_count = math.ceil(QUESTIONS_PER_MILESTONE / QUESTIONS_PER_CONCEPT)

        questions: List[MilestoneQuestion] = []
        for concept in ranked[:primary_count]:
            questions.extend(self._questions_for(concept, student, QUESTIONS_PER_CONCEPT))
        for concept in ranked[primary_count:]:
            if len(questions) >= QUESTIONS_PER_MILESTONE:
                break
            questions.extend(self._questions_for(concept, student, 1))

        return GeneratedMilestone(
            questions=questions[:QUESTIONS_PER_MILESTONE],
            concepts_covered=list(milestone.concepts),
            student_id=plan.student_id,
        )

    def start(self, session: Session, plan_id: str, week_number: int) -> MilestoneSession:
        generated = self.generate_questions(session, plan_id, week_number)
        if not generated.questions:
            raise MilestoneSessionError("Could not generate milestone questions.")
        attempt = MilestoneSession(
            plan_id=plan_id,
            week_number=week_number,
            student_id=generated.student_id,
            questions=generated.questions,
            concepts_covered=generated.concepts_covered,
            started_at=utcnow(),
            time_limit_seconds=self._time_limit,
        )
        self._sessions.delete(plan_id, week_number, generated.student_id)
        self._sessions.set(attempt)
        emit_event(
            "milestone_started",
            plan_id=plan_id,
            week_number=week_number,
            questions=len(generated.questions),
        )
        return attempt

    def answer(
        self,
        plan_id: str,
        week_number: int,
        student_id: str,
        question_id: str,
        selected_option_id: str,
        *,
        response_time_ms: int = 0,
        now: Optional[datetime] = None,
    ) -> tuple[MilestoneSession, MilestoneQuestion, MilestoneAnswer]:
        attempt = self._require_attempt(plan_id, week_number, student_id)
        now = now or utcnow()
        elapsed = (now - ensure_utc(attempt.started_at)).total_seconds()  # type: ignore[operator]
        if elapsed > attempt.time_limit_seconds:
            raise MilestoneSessionError("Time limit exceeded for this milestone.")
        question = attempt.question(question_id)
        if question is None:
            raise MilestoneAttemptNotFoundError(f"Question '{question_id}' is not part of this milestone.")
        if question_id in attempt.answers:
            raise MilestoneSessionError(f"Question '{question_id}' was already answered.")

        answer = MilestoneAnswer(
            question_id=question_id,
            selected_option_id=selected_option_id,
            is_correct=question.correct_option_id() == selected_option_id,
            response_time_ms=max(response_time_ms, 0),
        )
        attempt.answers[question_id] = answer
        self._sessions.set(attempt)
        return attempt, question, answer

    def complete(
        self,
        session: Session,
        plan_id: str,
        week_number: int,
        student_id: str,
    ) -> tuple[MilestoneEvaluation, MilestoneResult, MilestoneSession]:
        attempt = self._require_attempt(plan_id, week_number, student_id)
        answered = sum(1 for q in attempt.questions if q.question_id in attempt.answers)
        if answered < len(attempt.questions):
            raise MilestoneSessionError(f"Only {answered}/{len(attempt.questions)} questions answered.")
        evaluation = evaluate_milestone(attempt.questions, attempt.answers)
        tested = list(dict.fromkeys(question.concept_code for question in attempt.questions))
        result = self._plans.create_milestone_result(
            session,
            plan_id=plan_id,
            week_number=week_number,
            passed=evaluation.passed,
            score=evaluation.score / 100,
            concepts_tested=tested,
        )
        self._sessions.delete(plan_id, week_number, student_id)

        if evaluation.passed:
            logger.info("Week %d PASSED for plan %s (score %d%%)", week_number, plan_id, evaluation.score)
        else:
            logger.info(
                "Week %d FAILED for plan %s (score %d%%); failed concepts: %s",
                week_number,
                plan_id,
                evaluation.score,
                ", ".join(evaluation.failed_concepts) or "none",
            )
        emit_event(
            "milestone_evaluated",
            plan_id=plan_id,
            week_number=week_number,
            passed=evaluation.passed,
            score=evaluation.score,
            failed_concepts=evaluation.failed_concepts,
        )
        return evaluation, result, attempt

    def _require_attempt(self, plan_id: str, week_number: int, student_id: str) -> MilestoneSession:
        attempt = self._sessions.get(plan_id, week_number, student_id)
        if attempt is None:
            raise MilestoneAttemptNotFoundError("Milestone session not found or expired. Please start again.")
        return attempt

    def _questions_for(self, concept: Concept, student: Student, count: int) -> List[MilestoneQuestion]:
        payload = request_structured(
            self._text_generator,
            _question_prompt(concept, student, count),
            max_tokens=QUESTION_MAX_TOKENS,
            schema=GeneratedQuestionSet,
            purpose=f"milestone_questions:{concept.code}",
        )
        if payload is None:
            return fallback_questions(concept, count)

        stamp = int(time.time() * 1000)
        questions: List[MilestoneQuestion] = []
        for index, generated in enumerate(payload.questions[:count], start=1):
            questions.append(
                MilestoneQuestion(
                    question_id=f"{concept.code}-q{index}-{stamp}",
                    concept_code=concept.code,
                    concept_title=concept.title,
                    question_text=generated.questionText,
                    options=[
                        MilestoneOption(id=letter, text=option.text, is_correct=option.isCorrect)  # type: ignore[arg-type]
                        for letter, option in zip("ABCD", generated.options)
                    ],
                    explanation=generated.explanation,
                    difficulty=concept.difficulty,
                )
            )
        if len(questions) < count:
            questions.extend(fallback_questions(concept, count - len(questions), stamp=stamp))
        return questions


__all__ = [
    "CONCEPT_PASS_THRESHOLD",
    "GeneratedMilestone",
    "MilestoneAssessor",
    "PASS_THRESHOLD",
    "QUESTIONS_PER_CONCEPT",
    "QUESTIONS_PER_MILESTONE",
    "TIME_LIMIT_SECONDS",
    "evaluate_milestone",
    "fallback_questions",
]
