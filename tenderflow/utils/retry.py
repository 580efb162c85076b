from __future__ import annotations

import asyncio
import random
from typing import Optional


def compute_backoff(
    attempt: int,
    base: float = 1.5,
    jitter: float = 0.5,
    max_delay: Optional[float] = None,
) -> float:
    """Seconds to wait before retry ``attempt`` (1-based), capped at ``max_delay``."""
    delay = base**attempt + random.uniform(0, jitter)
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


async def schedule_retry(
    attempt: int,
    base: float = 1.5,
    jitter: float = 0.5,
    max_delay: Optional[float] = None,
) -> float:
    """Sleep for the backoff delay of ``attempt`` and return it."""
    delay = compute_backoff(attempt, base=base, jitter=jitter, max_delay=max_delay)
    await asyncio.sleep(delay)
    return delay
