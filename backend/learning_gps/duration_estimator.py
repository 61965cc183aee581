"""Per-learner hours-to-mastery estimates."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from .clock import ensure_utc
from .learning_plan import SessionRecord
from .rounding import round_half_up

BASE_HOURS_BY_DIFFICULTY: Dict[int, float] = {
    1: 0.4,
    2: 0.5,
    3: 0.6,
    4: 0.75,
    5: 1.0,
    6: 1.25,
    7: 1.5,
    8: 2.0,
    9: 2.5,
    10: 3.0,
}
DEFAULT_BASE_HOURS = 1.0
MIN_CONCEPT_HOURS = 0.25

VELOCITY_WINDOW_DAYS = 28
MIN_VELOCITY_SESSIONS = 3
MIN_VELOCITY = 0.3
MAX_VELOCITY = 3.0
DEFAULT_ANSWERS_PER_CONCEPT = 10.0


def base_hours(difficulty: int) -> float:
    return BASE_HOURS_BY_DIFFICULTY.get(difficulty, DEFAULT_BASE_HOURS)


def grade_factor(student_grade_rank: int, concept_grade_rank: int) -> float:
    """Below-level learners take longer, above-level learners less."""
    gap = concept_grade_rank - student_grade_rank
    if gap <= -2:
        return 0.6
    if gap == -1:
        return 0.8
    if gap == 0:
        return 1.0
    if gap == 1:
        return 1.2
    return 1.5


def velocity_factor(velocity: Optional[float]) -> float:
    if velocity is None or velocity <= 0:
        return 1.0
    return min(max(1.0 / velocity, 0.5), 2.0)


def mastery_discount(probability: float) -> float:
    if probability <= 0.3:
        return 1.0
    if probability <= 0.5:
        return 0.75
    if probability <= 0.7:
        return 0.5
    if probability <= 0.85:
        return 0.3
    return 0.0


def estimate_hours(
    difficulty: int,
    concept_grade_rank: int,
    student_grade_rank: int,
    historical_velocity: Optional[float],
    mastery_probability: float,
) -> float:
    """Hours a learner still needs on a concept; 0 once it counts as mastered."""
    discount = mastery_discount(mastery_probability)
    if discount <= 0:
        return 0.0
    hours = (
        base_hours(difficulty)
        * grade_factor(student_grade_rank, concept_grade_rank)
        * velocity_factor(historical_velocity)
        * discount
    )
    return max(MIN_CONCEPT_HOURS, round_half_up(hours, 2))


def compute_historical_velocity(
    sessions: Iterable[SessionRecord],
    *,
    now: datetime,
    answers_per_concept: float = DEFAULT_ANSWERS_PER_CONCEPT,
) -> Optional[float]:
    """Throughput-and-accuracy velocity over the last four weeks.

    ``correct answers / answers_per_concept`` stands in for concepts learned.
    The result is a heuristic multiplier around 1.0, not a calibrated ability
    estimate. Returns ``None`` when there is too little history.
    """
    window_start = now - timedelta(days=VELOCITY_WINDOW_DAYS)
    recent = [
        session
        for session in sessions
        if session.state == "COMPLETED" and ensure_utc(session.started_at) >= window_start
    ]
    if len(recent) < MIN_VELOCITY_SESSIONS:
        return None

    total_hours = sum((session.duration_seconds or 0) for session in recent) / 3600
    total_questions = sum(session.questions_answered for session in recent)
    total_correct = sum(session.correct_answers for session in recent)
    if total_hours <= 0 or total_questions <= 0:
        return None

    accuracy = total_correct / total_questions
    concepts_per_hour = (total_correct / answers_per_concept) / total_hours
    velocity = concepts_per_hour * (0.5 + 0.5 * accuracy)
    return min(max(velocity, MIN_VELOCITY), MAX_VELOCITY)


__all__ = [
    "BASE_HOURS_BY_DIFFICULTY",
    "MIN_CONCEPT_HOURS",
    "base_hours",
    "compute_historical_velocity",
    "estimate_hours",
    "grade_factor",
    "mastery_discount",
    "velocity_factor",
]
