"""Greedy weekly bucketing of an ordered, estimated concept list."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .learning_plan import WeeklyMilestone
from .rounding import round_half_up, round_percent


@dataclass(frozen=True)
class EstimatedConcept:
    code: str
    title: str
    hours: float


def requires_milestone_check(week_number: int, *, interval_weeks: int, is_final: bool) -> bool:
    if is_final:
        return True
    return week_number % max(interval_weeks, 1) == 0


def partition_into_weeks(
    concepts: Sequence[EstimatedConcept],
    weekly_hours: float,
    *,
    check_interval_weeks: int = 1,
) -> List[WeeklyMilestone]:
    """Fill weeks in sequence order without exceeding ``weekly_hours``.

    A concept that alone exceeds the budget still gets a week of its own.
    Concepts estimated at zero hours are already mastered and are skipped.
    """
    active = [concept for concept in concepts if concept.hours > 0]
    total_hours = sum(concept.hours for concept in active)

    weeks: List[WeeklyMilestone] = []
    codes: List[str] = []
    titles: List[str] = []
    week_hours = 0.0
    cumulative = 0.0

    def close_week(final: bool) -> None:
        nonlocal cumulative
        cumulative += week_hours
        week_number = len(weeks) + 1
        weeks.append(
            WeeklyMilestone(
                week_number=week_number,
                concepts=list(codes),
                concept_titles=list(titles),
                estimated_hours=round_half_up(week_hours, 2),
                cumulative_progress=100 if final else round_percent(cumulative, total_hours),
                milestone_check=requires_milestone_check(
                    week_number, interval_weeks=check_interval_weeks, is_final=final
                ),
            )
        )

    for concept in active:
        if codes and week_hours + concept.hours > weekly_hours:
            close_week(final=False)
            codes, titles, week_hours = [], [], 0.0
        codes.append(concept.code)
        titles.append(concept.title)
        week_hours += concept.hours

    if codes:
        close_week(final=True)

    return weeks


__all__ = ["EstimatedConcept", "partition_into_weeks", "requires_milestone_check"]
