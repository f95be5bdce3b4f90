"""
Exponential backoff with symmetric 25% jitter.

    d = max(1, round(base * 2 ** (attempt - 1)))
    j = round(0.25 * d)
    delay = randint(max(1, d - j), d + j)

Rounding is half-up (not Python's banker's rounding) so that the bounds
match the documented formula for every base delay. This module never
sleeps; the retry engine owns the wait.
"""

import math
import random
from typing import Optional

JITTER_RATIO = 0.25

_default_rng = random.Random()


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def base_delay_for(base_delay: float, attempt: int) -> int:
    """Un-jittered delay for ``attempt`` (1-based)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return max(1, round_half_up(base_delay * 2 ** (attempt - 1)))


def next_delay(
    base_delay: float, attempt: int, rng: Optional[random.Random] = None
) -> int:
    """
    Compute the wait in whole seconds before the attempt after ``attempt``.

    Args:
        base_delay: Base delay in seconds
        attempt: Number of the attempt that just failed (1-based)
        rng: Random source; pass a seeded ``random.Random`` for determinism

    Returns:
        Delay in seconds, uniform over the inclusive jitter band

    Raises:
        ValueError: If attempt < 1
    """
    delay = base_delay_for(base_delay, attempt)
    jitter = round_half_up(delay * JITTER_RATIO)
    low = max(1, delay - jitter)
    high = delay + jitter
    return (rng or _default_rng).randint(low, high)
