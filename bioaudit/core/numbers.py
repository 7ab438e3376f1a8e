from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (built-in round() is banker's)."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)
