from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, base: float = 1.0, factor: float = 2.0, jitter: float = 0.0
) -> float:
    """Compute exponential backoff with jitter for the given 1-based attempt."""
    delay = base * factor ** max(attempt - 1, 0)
    return delay + random.uniform(0, jitter)


async def schedule_retry(
    attempt: int, base: float = 1.0, factor: float = 2.0, jitter: float = 0.0
) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base=base, factor=factor, jitter=jitter)
    await asyncio.sleep(delay)
