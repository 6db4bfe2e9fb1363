"""Token-bucket rate limiter for outbound classifier calls.

Provides:
- TokenBucket: ``rate`` tokens per second, ``burst`` capacity, bounded wait
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from spamcrasher.errors import RateLimited


class TokenBucket:
    """Async token bucket with reservation semantics.

    A caller that finds the bucket empty reserves the next token (the balance
    goes negative) and sleeps until it refills, so waiting callers are served
    in arrival order. If the wait would exceed ``max_wait`` the call fails
    straight away with :class:`RateLimited` and nothing is reserved.

    ``rate <= 0`` disables limiting entirely.

    Uses asyncio.Lock for async-safe bookkeeping; the lock is never held
    while sleeping.
    """

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        max_wait: float = 10.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if burst < 1:
            raise ValueError("burst must be >= 1")
        self.rate = float(rate)
        self.burst = int(burst)
        self.max_wait = max(0.0, float(max_wait))
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.burst)
        self._updated = clock()
        self._lock = asyncio.Lock()
        self._delayed = 0
        self._rejected = 0

    @property
    def enabled(self) -> bool:
        return self.rate > 0

    def _refill(self) -> None:
        """Add the tokens earned since the last update (called within lock)."""
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._updated = now

    async def acquire(self) -> float:
        """Take one token, waiting for it if necessary.

        Returns:
            The number of seconds the caller waited (0.0 when a token was free).

        Raises:
            RateLimited: If the token would not be available within ``max_wait``.
        """
        if not self.enabled:
            return 0.0

        async with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0

            wait = (1.0 - self._tokens) / self.rate
            if wait > self.max_wait:
                self._rejected += 1
                raise RateLimited(
                    f"Rate limit of {self.rate:g}/s (burst {self.burst}) exhausted, "
                    f"next slot in {wait:.2f}s exceeds max wait {self.max_wait:.2f}s",
                    retry_after=wait,
                )
            self._tokens -= 1.0
            self._delayed += 1

        try:
            await self._sleep(wait)
        except asyncio.CancelledError:
            # Give the reserved token back so a cancelled caller does not starve others
            async with self._lock:
                self._tokens = min(float(self.burst), self._tokens + 1.0)
            raise
        return wait

    @property
    def usage(self) -> dict:
        return {
            "rate": self.rate,
            "burst": self.burst,
            "tokens": round(self._tokens, 3),
            "delayed": self._delayed,
            "rejected": self._rejected,
        }
