"""Prerequisite-respecting ordering of a concept set.

Kahn's algorithm over the subgraph induced by the requested concepts. Ready
concepts are emitted in ascending ``(grade rank, difficulty)`` order and the
ready queue is re-sorted after every emit so the result does not depend on the
order edges were discovered in. Concepts caught in a prerequisite cycle are
appended at the end in the same key order; that tail is a best-effort repair
and does not reflect true prerequisite order.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .learning_plan import Concept

logger = logging.getLogger(__name__)

GRADE_ORDER: Tuple[str, ...] = ("K", "G1", "G2", "G3", "G4", "G5", "G6", "G7", "G8", "G9", "G10")
_GRADE_RANK: Dict[str, int] = {grade: index for index, grade in enumerate(GRADE_ORDER)}


def grade_rank(grade_level: Optional[str]) -> int:
    """Position of a grade label in ``GRADE_ORDER``; unknown labels rank with K."""
    if not grade_level:
        return 0
    return _GRADE_RANK.get(grade_level.strip().upper(), 0)


def sequence_key(concept: Concept) -> Tuple[int, int]:
    return grade_rank(concept.grade_level), concept.difficulty


def sequence_concepts(
    concepts: Sequence[Concept],
    edges: Iterable[Tuple[str, str]],
) -> List[str]:
    """Return every concept code once, prerequisites first.

    ``edges`` are ``(prerequisite, dependent)`` pairs; pairs touching a code
    outside ``concepts`` are ignored.
    """
    by_code: Dict[str, Concept] = {}
    for concept in concepts:
        by_code.setdefault(concept.code, concept)
    if not by_code:
        return []

    dependents: Dict[str, List[str]] = defaultdict(list)
    in_degree: Dict[str, int] = {code: 0 for code in by_code}
    seen: set[Tuple[str, str]] = set()
    for prerequisite, dependent in edges:
        if prerequisite not in by_code or dependent not in by_code:
            continue
        if prerequisite == dependent or (prerequisite, dependent) in seen:
            continue
        seen.add((prerequisite, dependent))
        dependents[prerequisite].append(dependent)
        in_degree[dependent] += 1

    def key(code: str) -> Tuple[int, int]:
        return sequence_key(by_code[code])

    ready = sorted((code for code, degree in in_degree.items() if degree == 0), key=key)
    ordered: List[str] = []
    while ready:
        code = ready.pop(0)
        ordered.append(code)
        for dependent in dependents.get(code, ()):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                ready.append(dependent)
        ready.sort(key=key)

    if len(ordered) < len(by_code):
        emitted = set(ordered)
        cyclic = sorted((code for code in by_code if code not in emitted), key=key)
        logger.warning(
            "Prerequisite cycle among %d concept(s); appending in grade/difficulty order: %s",
            len(cyclic),
            ", ".join(cyclic),
        )
        ordered.extend(cyclic)

    return ordered


__all__ = ["GRADE_ORDER", "grade_rank", "sequence_concepts", "sequence_key"]
