"""Exponential backoff with jitter for rate-limited retries."""

from __future__ import annotations

import random
from typing import Optional

JITTER_LOW = 0.8
JITTER_HIGH = 1.2


def backoff_delay(
    attempt: int,
    initial_delay_ms: float = 1000.0,
    max_delay_ms: float = 10000.0,
    factor: float = 2.0,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay in milliseconds before retry number *attempt* (1-based).

    ``min(initial * factor**attempt, max)`` scaled by a uniform jitter in
    [0.8, 1.2] so concurrent clients do not retry in lockstep.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    try:
        base = min(initial_delay_ms * factor**attempt, max_delay_ms)
    except OverflowError:
        base = max_delay_ms
    draw = rng.uniform if rng is not None else random.uniform
    return base * draw(JITTER_LOW, JITTER_HIGH)
