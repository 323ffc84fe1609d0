from __future__ import annotations

import asyncio
import random
from typing import Iterator


def next_backoff(prev: float, cap: float) -> float:
    """Double, capped."""
    return min(prev * 2.0, cap)


def jitter(v: float, *, ratio: float = 0.2) -> float:
    """v scaled by a random factor in [1 - ratio, 1 + ratio]."""
    return v * random.uniform(1.0 - ratio, 1.0 + ratio)


async def sleep_with_jitter(base: float, *, ratio: float = 0.2) -> None:
    if base <= 0:
        return
    await asyncio.sleep(jitter(base, ratio=ratio))


def retry_delays(retries: int, initial: float = 0.5, cap: float = 4.0) -> Iterator[float]:
    """
    Pause before each retry of a bounded budget, e.g.
    retry_delays(3, 0.5, cap=1.0) -> 0.5, 1.0, 1.0
    """
    delay = initial
    for _ in range(max(0, retries)):
        yield delay
        delay = next_backoff(delay, cap)
