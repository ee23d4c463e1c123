from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from ..exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base: float = 0.05, factor: float = 2.0, jitter: float = 0.05) -> float:
    """Compute exponential backoff with jitter."""
    delay = base * factor ** (attempt - 1)
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt)
    await asyncio.sleep(delay)


async def retry_on_conflict(operation: Callable[[], Awaitable[T]], attempts: int = 3) -> T:
    """Run ``operation`` again when it loses an optimistic concurrency race.

    ``operation`` must re-read whatever it writes, since a conflict means the
    stored instance moved on. Any other error, or a conflict on the last
    attempt, propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConcurrencyConflictError as exc:
            if attempt == attempts:
                raise
            logger.warning(
                f"Conflict on instance {exc.instance_id} (attempt {attempt}/{attempts}), retrying"
            )
            await schedule_retry(attempt)
    raise ValueError("attempts must be at least 1")
