"""
polling.py — Bounded polling for asynchronous remote jobs.

    result = await poll_until(check_status, max_attempts=30, interval=2.0)

`fn` is awaited up to `max_attempts` times, sleeping `interval` seconds
between attempts. It returns None while the job is still pending and the
final value once done; any exception it raises propagates immediately.
When the budget runs out, ClassifierTimeoutError is raised, so the total
wait is bounded by max_attempts × interval.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from app.core.errors import ClassifierTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def poll_until(
    fn: Callable[[], Awaitable[Optional[T]]],
    max_attempts: int,
    interval: float,
    description: str = "remote job",
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        result = await fn()
        if result is not None:
            logger.debug("%s finished after %d poll(s)", description, attempt)
            return result
        if attempt < max_attempts:
            await asyncio.sleep(interval)

    raise ClassifierTimeoutError(
        f"{description} still pending after {max_attempts} polls "
        f"({max_attempts * interval:.0f}s budget)"
    )
