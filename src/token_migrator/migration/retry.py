"""Retry primitives.

``retry_operation`` is the engine's only retry policy: a fixed number of
attempts with a fixed delay and no backoff growth. The wrapped operation may
run more than once, so it must be safe to repeat or detect that its effect
already happened.

``retry_with_timeout`` bounds each attempt with a timeout and waits a fixed
backoff between attempts. Step implementations use it around slow client
initialisation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    delay_seconds: float,
) -> T:
    """Await ``operation()`` up to ``max_retries`` times.

    Args:
        operation: Zero-argument coroutine function.
        max_retries: Total number of attempts (at least 1).
        delay_seconds: Fixed pause between a failed attempt and the next one.

    Returns:
        The first successful result.

    Raises:
        Exception: The error of the final attempt, unchanged.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_retries:
                raise
            logger.warning(
                "Attempt failed; retrying",
                extra={
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_seconds": delay_seconds,
                    "error": str(e),
                },
            )
            await asyncio.sleep(delay_seconds)

    raise AssertionError("unreachable")


async def retry_with_timeout(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    timeout_seconds: float = 60.0,
    backoff_seconds: float = 5.0,
) -> T:
    """Await ``operation()`` with a per-attempt timeout.

    A timed-out attempt counts as a failure (``TimeoutError``) and is retried
    like any other.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_seconds)
        except Exception as e:
            if attempt == max_attempts:
                raise
            logger.warning(
                "Attempt failed; waiting before retry",
                extra={"attempt": attempt, "backoff_seconds": backoff_seconds, "error": str(e)},
            )
            await asyncio.sleep(backoff_seconds)

    raise AssertionError("unreachable")
