"""Builds and persists a learner's plan for a goal."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .clock import ensure_utc, utcnow
from .concept_sequencer import grade_rank, sequence_concepts
from .config import Settings
from .duration_estimator import VELOCITY_WINDOW_DAYS, compute_historical_velocity, estimate_hours
from .errors import EmptyGoalError, GoalNotFoundError, StudentNotFoundError
from .learning_plan import MASTERY_THRESHOLD, Concept, LearningPlan, WeeklyMilestone
from .milestone_partitioner import EstimatedConcept, partition_into_weeks
from .repositories import CatalogRepository, PlanRepository, catalog_repository, plan_repository
from .rounding import round_half_up, round_percent
from .telemetry import emit_event
from .text_generation import TextGenerator, request_structured

logger = logging.getLogger(__name__)

NARRATIVE_MAX_TOKENS = 512


class NarrativePayload(BaseModel):
    narrative: str = Field(..., min_length=1)


@dataclass(frozen=True)
class PlanBuildResult:
    plan: LearningPlan
    concepts_already_mastered: int
    concepts_remaining: int
    projected_completion_date: datetime

    @property
    def narrative(self) -> str:
        return self.plan.narrative

    @property
    def weekly_milestones(self) -> List[WeeklyMilestone]:
        return self.plan.weekly_milestones


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def fallback_narrative(
    student_name: str,
    goal_name: str,
    *,
    total_concepts: int,
    mastered: int,
    remaining: int,
    week_count: int,
    first_titles: List[str],
) -> str:
    parts = [f"Hey {student_name}! I'm excited to help you with {goal_name}!\n\n"]
    if mastered > 0:
        parts.append(
            f"You've already mastered {_plural(mastered, 'concept')} "
            f"({round_percent(mastered, total_concepts)}%), a great start! "
        )
    if remaining == 0:
        parts.append("There is nothing left to learn for this goal. Nice work!")
        return "".join(parts)
    parts.append(f"We have {_plural(remaining, 'concept')} to work through together. ")
    parts.append(f"At your pace, we should finish in about {_plural(week_count, 'week')}.\n\n")
    parts.append(f"First up: {', '.join(first_titles[:3])}. Let's do this!")
    return "".join(parts)


def _narrative_prompt(
    student_name: str,
    goal_name: str,
    *,
    total_concepts: int,
    mastered: int,
    remaining: int,
    total_hours: float,
    week_count: int,
    first_titles: List[str],
) -> str:
    return (
        "Generate a personalized, encouraging learning plan narrative for a student.\n\n"
        "CONTEXT:\n"
        f"- Student name: {student_name}\n"
        f"- Goal: {goal_name}\n"
        f"- Total concepts in goal: {total_concepts}\n"
        f"- Already mastered: {mastered}\n"
        f"- Remaining to learn: {remaining}\n"
        f"- Estimated total hours: {total_hours}\n"
        f"- Estimated weeks: {week_count}\n"
        f"- First concepts to learn: {', '.join(first_titles)}\n\n"
        "REQUIREMENTS:\n"
        "- Write 2-3 short paragraphs addressed to the student\n"
        "- Acknowledge what the student already knows\n"
        "- Preview what they'll learn first\n"
        "- Give a motivational estimate of completion\n\n"
        'Respond with JSON: {"narrative": "The full narrative text with line breaks between paragraphs"}'
    )


class PlanBuilder:
    """Orders, estimates and partitions a goal's concepts into a persisted plan."""

    def __init__(
        self,
        settings: Settings,
        text_generator: TextGenerator,
        *,
        catalog: CatalogRepository = catalog_repository,
        plans: PlanRepository = plan_repository,
    ) -> None:
        self._settings = settings
        self._text_generator = text_generator
        self._catalog = catalog
        self._plans = plans

    def build_plan(
        self,
        session: Session,
        goal_id: str,
        student_id: str,
        weekly_hours_available: float,
        target_date: Optional[datetime] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PlanBuildResult:
        now = now or utcnow()
        target_date = ensure_utc(target_date)

        goal = self._catalog.get_goal(session, goal_id)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        student = self._catalog.get_student(session, student_id)
        if student is None:
            raise StudentNotFoundError(student_id)
        required = list(dict.fromkeys(goal.required_concept_codes))
        if not required:
            raise EmptyGoalError(f"Goal '{goal.name}' has no required concepts.")

        logger.info("Generating plan for goal %s (%d required concepts)", goal.name, len(required))

        concepts = self._catalog.get_concepts(session, required)
        mastery = self._catalog.mastery_of(session, student_id, required)
        history = self._catalog.completed_sessions_between(
            session, student_id, now - timedelta(days=VELOCITY_WINDOW_DAYS)
        )
        velocity = compute_historical_velocity(
            history,
            now=now,
            answers_per_concept=self._settings.velocity_answers_per_concept,
        )
        student_rank = grade_rank(student.grade_level)

        mastered: List[Concept] = []
        remaining: List[Concept] = []
        estimates: dict[str, float] = {}
        for code in required:
            concept = concepts.get(code)
            if concept is None:
                logger.warning("Concept %s not found in catalog; skipping", code)
                continue
            probability = mastery.get(code, 0.0)
            if probability >= MASTERY_THRESHOLD:
                mastered.append(concept)
                continue
            remaining.append(concept)
            estimates[code] = estimate_hours(
                concept.difficulty,
                grade_rank(concept.grade_level),
                student_rank,
                velocity,
                probability,
            )

        logger.info(
            "Student %s: %d mastered, %d remaining, velocity=%s",
            student_id,
            len(mastered),
            len(remaining),
            f"{velocity:.2f}" if velocity is not None else "n/a",
        )

        ordered_codes = sequence_concepts(
            remaining, self._catalog.edges_among(session, [c.code for c in remaining])
        )
        by_code = {concept.code: concept for concept in remaining}
        ordered = [
            EstimatedConcept(code=code, title=by_code[code].title, hours=estimates[code])
            for code in ordered_codes
        ]
        milestones = partition_into_weeks(
            ordered,
            weekly_hours_available,
            check_interval_weeks=self._settings.milestone_check_interval_weeks,
        )

        total_hours = sum(item.hours for item in ordered)
        rounded_hours = round_half_up(total_hours, 1)
        if weekly_hours_available > 0:
            weeks_to_complete = math.ceil(total_hours / weekly_hours_available)
        else:
            weeks_to_complete = len(milestones)
        projected = now + timedelta(days=weeks_to_complete * 7)
        completion = target_date if target_date is not None and target_date > projected else projected

        first_titles = [item.title for item in ordered[:5]]
        narrative = self._narrative(
            student.display_name,
            goal.name,
            total_concepts=len(mastered) + len(remaining),
            mastered=len(mastered),
            remaining=len(remaining),
            total_hours=rounded_hours,
            week_count=len(milestones),
            first_titles=first_titles,
        )

        plan = self._plans.create(
            session,
            student_id=student_id,
            goal_id=goal_id,
            concept_sequence=[c.code for c in mastered] + ordered_codes,
            concept_estimates=estimates,
            current_index=len(mastered),
            total_estimated_hours=rounded_hours,
            weekly_milestones=milestones,
            narrative=narrative,
            projected_completion_date=completion,
            target_completion_date=target_date,
            velocity_hours_per_week=weekly_hours_available,
        )
        logger.info(
            "Plan %s created: %sh total, %d weeks, projected %s",
            plan.id,
            rounded_hours,
            len(milestones),
            projected.date().isoformat(),
        )
        emit_event(
            "plan_created",
            plan_id=plan.id,
            student_id=student_id,
            goal_id=goal_id,
            concepts_mastered=len(mastered),
            concepts_remaining=len(remaining),
            total_hours=rounded_hours,
            weeks=len(milestones),
        )
        return PlanBuildResult(
            plan=plan,
            concepts_already_mastered=len(mastered),
            concepts_remaining=len(remaining),
            projected_completion_date=completion,
        )

    def _narrative(self, student_name: str, goal_name: str, **context) -> str:  # type: ignore[no-untyped-def]
        prompt = _narrative_prompt(student_name, goal_name, **context)
        payload = request_structured(
            self._text_generator,
            prompt,
            max_tokens=NARRATIVE_MAX_TOKENS,
            schema=NarrativePayload,
            purpose="plan_narrative",
        )
        if payload is not None and payload.narrative.strip():
            return payload.narrative.strip()
        context.pop("total_hours", None)
        return fallback_narrative(student_name, goal_name, **context)


__all__ = ["NarrativePayload", "PlanBuildResult", "PlanBuilder", "fallback_narrative"]
