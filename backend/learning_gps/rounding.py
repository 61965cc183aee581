"""Half-up rounding used for every hour, percentage and score the planner reports."""

from __future__ import annotations

import math


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def round_percent(numerator: float, denominator: float) -> int:
    if denominator <= 0:
        return 0
    return int(round_half_up(numerator / denominator * 100))


__all__ = ["round_half_up", "round_percent"]
