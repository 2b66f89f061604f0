"""
Randomized pacing delays.

Every wait the runner makes against the live site goes through here so a
single ``speed_scale`` setting can slow down or speed up the whole job.
"""

import asyncio
import random
from typing import List, Optional, Sequence


def next_delay_secs(min_secs: float = 0.5, max_secs: float = 1.0, scale: float = 1.0) -> float:
    """
    Random delay in seconds, uniformly drawn from [min_secs, max_secs] and scaled.

    >>> 0.5 <= next_delay_secs(0.5, 1.0) <= 1.0
    True
    """
    if max_secs < min_secs:
        min_secs, max_secs = max_secs, min_secs
    return random.uniform(min_secs, max_secs) * scale


def increasing_delays_ms(
    base: int = 500,
    factor: float = 1.2,
    max_ms: int = 1000,
    steps: int = 1,
    jitter: float = 0.15,
    scale: float = 1.0,
) -> List[int]:
    """
    Build a jittered, non-decreasing-on-average delay sequence in milliseconds.

    Each step is ``delay +/- jitter``, clamped to [base, max_ms], after which
    the delay grows by ``factor`` up to ``max_ms``.
    """
    delays = []
    delay = float(base)
    for _ in range(max(1, steps)):
        jitter_amt = delay * jitter * (random.random() * 2 - 1)
        ms = round(min(max(delay + jitter_amt, base), max_ms))
        delays.append(max(0, round(ms * scale)))
        delay = min(round(delay * factor), max_ms)
    return delays


def scaled_sequence_ms(sequence_ms: Sequence[int], scale: float = 1.0) -> List[int]:
    return [max(0, round(ms * scale)) for ms in sequence_ms]


async def sleep_random(min_secs: float, max_secs: float, scale: float = 1.0) -> float:
    """Sleep a random, scaled number of seconds and return how long it slept."""
    secs = next_delay_secs(min_secs, max_secs, scale)
    await asyncio.sleep(secs)
    return secs


async def sleep_sequence_ms(sequence_ms: Optional[Sequence[int]]) -> None:
    for ms in sequence_ms or []:
        await asyncio.sleep(ms / 1000)
