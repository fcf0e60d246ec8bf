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
    """Compute exponential backoff with jitter, capped at ``max_delay``."""
    delay = base ** attempt + random.uniform(0, jitter)
    if max_delay is not None:
        return min(delay, max_delay)
    return delay


async def schedule_retry(
    attempt: int,
    base: float = 1.5,
    jitter: float = 0.5,
    max_delay: Optional[float] = None,
) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base, jitter, max_delay)
    await asyncio.sleep(delay)
