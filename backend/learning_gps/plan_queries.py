"""Read-side helpers over stored plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from .duration_estimator import base_hours
from .errors import GoalNotFoundError, PlanNotFoundError
from .learning_plan import MASTERY_THRESHOLD, LearningPlan, MilestoneResult
from .repositories import CatalogRepository, PlanRepository, catalog_repository, plan_repository
from .rounding import round_percent

DEVELOPING_THRESHOLD = 0.5
RECENT_MILESTONE_LIMIT = 3


@dataclass(frozen=True)
class NextConcept:
    code: str
    title: str
    description: str
    estimated_hours: float
    position: int
    total: int


@dataclass(frozen=True)
class MasterySummary:
    total: int
    mastered: int
    developing: int
    novice: int
    overall_progress: int


@dataclass(frozen=True)
class PlanSummary:
    plan: LearningPlan
    goal_name: str
    progress_percent: int
    recent_milestones: List[MilestoneResult] = field(default_factory=list)


@dataclass(frozen=True)
class PlanListing:
    plans: List[PlanSummary]
    counts: Dict[str, int]
    can_add_more: bool
    slots_remaining: int


def get_next_concept(
    session: Session,
    plan_id: str,
    *,
    catalog: CatalogRepository = catalog_repository,
    plans: PlanRepository = plan_repository,
) -> NextConcept | None:
    """The concept at ``current_index`` of an ACTIVE plan, or ``None`` when there is nothing to study."""
    plan = plans.get(session, plan_id)
    if plan is None:
        raise PlanNotFoundError(plan_id)
    if plan.status != "ACTIVE" or plan.current_index >= len(plan.concept_sequence):
        return None

    code = plan.concept_sequence[plan.current_index]
    concept = catalog.get_concepts(session, [code]).get(code)
    if concept is None:
        return None
    return NextConcept(
        code=concept.code,
        title=concept.title,
        description=concept.description,
        estimated_hours=base_hours(concept.difficulty),
        position=plan.current_index + 1,
        total=len(plan.concept_sequence),
    )


def get_mastery_summary(
    session: Session,
    student_id: str,
    goal_id: str,
    *,
    catalog: CatalogRepository = catalog_repository,
) -> MasterySummary:
    goal = catalog.get_goal(session, goal_id)
    if goal is None:
        raise GoalNotFoundError(goal_id)
    codes = list(dict.fromkeys(goal.required_concept_codes))
    mastery = catalog.mastery_of(session, student_id, codes)

    mastered = sum(1 for code in codes if mastery.get(code, 0.0) >= MASTERY_THRESHOLD)
    developing = sum(
        1 for code in codes if DEVELOPING_THRESHOLD <= mastery.get(code, 0.0) < MASTERY_THRESHOLD
    )
    return MasterySummary(
        total=len(codes),
        mastered=mastered,
        developing=developing,
        novice=len(codes) - mastered - developing,
        overall_progress=round_percent(mastered, len(codes)),
    )


def list_plans(
    session: Session,
    student_id: str,
    *,
    max_active_plans: int = 3,
    plans: PlanRepository = plan_repository,
    statuses: Optional[List[str]] = None,
) -> PlanListing:
    stored = plans.list_for_student(session, student_id)
    counts = {"total": len(stored), "ACTIVE": 0, "PAUSED": 0, "COMPLETED": 0, "ABANDONED": 0}
    for plan in stored:
        counts[plan.status] += 1

    summaries = [
        PlanSummary(
            plan=plan,
            goal_name=plans.goal_name(session, plan.id),
            progress_percent=round_percent(plan.current_index, len(plan.concept_sequence)),
            recent_milestones=plans.recent_milestone_results(
                session, plan.id, limit=RECENT_MILESTONE_LIMIT
            ),
        )
        for plan in stored
        if not statuses or plan.status in statuses
    ]
    slots = max(max_active_plans - counts["ACTIVE"], 0)
    return PlanListing(plans=summaries, counts=counts, can_add_more=slots > 0, slots_remaining=slots)


__all__ = [
    "MasterySummary",
    "NextConcept",
    "PlanListing",
    "PlanSummary",
    "get_mastery_summary",
    "get_next_concept",
    "list_plans",
]
