"""Retry wrapper for classifier calls.

Provides:
- call_with_retries(): exponential backoff for transient provider failures
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from spamcrasher.errors import ProviderTransientError
from spamcrasher.util.logger import get_logger

T = TypeVar("T")
logger = get_logger("classifier_retry")

RETRY_EXCEPTIONS: Tuple[Type[BaseException], ...] = (ProviderTransientError,)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
    return min(base_delay * (2 ** attempt), max_delay)


async def call_with_retries(
    provider_call: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = None,
    operation: str = "classify",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_attempt: Optional[Callable[[int], None]] = None,
) -> T:
    """Call ``provider_call`` up to ``max_retries`` times.

    Only exceptions listed in ``retry_on`` (transient provider errors by
    default) are retried; anything else propagates immediately. When every
    attempt fails the last error is re-raised, so the caller sees exactly one
    failure per call.

    Args:
        provider_call: Zero-argument coroutine factory, invoked once per attempt.
        max_retries: Total number of attempts.
        base_delay: Delay before the first retry, doubled on each further retry.
        max_delay: Upper bound for a single delay.
        retry_on: Exception types that are worth another attempt.
        operation: Label used in log lines.
        sleep: Awaitable used for backoff (injectable for tests).
        on_attempt: Called with the 1-based attempt number before each call.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    retry_exceptions = retry_on or RETRY_EXCEPTIONS
    last_error: BaseException | None = None

    for attempt in range(max_retries):
        if on_attempt is not None:
            on_attempt(attempt + 1)
        try:
            return await provider_call()
        except retry_exceptions as exc:
            last_error = exc
            if attempt < max_retries - 1:
                delay = backoff_delay(attempt, base_delay, max_delay)
                logger.warning(
                    "[RETRY] %s attempt %d/%d failed, retrying in %.2fs: %s",
                    operation, attempt + 1, max_retries, delay, exc,
                )
                await sleep(delay)

    logger.error("[RETRY] %s failed after %d attempts: %s", operation, max_retries, last_error)
    if last_error:
        raise last_error

    raise RuntimeError("Retry loop exited without result or error")
