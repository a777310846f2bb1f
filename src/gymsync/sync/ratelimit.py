"""Outbound call pacing for the remote board API.

RateLimiter enforces two ceilings at once: a minimum delay between
consecutive calls and a sliding one-minute window holding at most
``requests_per_minute`` grants. One limiter is shared by every sync manager,
worker and client retry, so any 60-second span sees no more than the
configured quota no matter how work is fanned out.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Minimum-interval plus sliding-window limiter.

    Args:
        requests_per_minute: Most grants allowed in any 60-second span.
        min_interval_seconds: Minimum spacing between two granted calls.
        clock: Monotonic clock (injectable for tests).
        sleep: Async sleep (injectable for tests).
    """

    def __init__(
        self,
        requests_per_minute: int = 5000,
        min_interval_seconds: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self._limit = requests_per_minute
        self._min_interval = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._grants: deque[float] = deque()
        self._last_grant: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def _evict(self, now: float) -> None:
        while self._grants and self._grants[0] + WINDOW_SECONDS <= now:
            self._grants.popleft()

    async def acquire(self) -> None:
        """Wait until one more call may be issued."""
        async with self._lock:
            now = self._clock()
            self._evict(now)

            wait = 0.0
            if self._last_grant is not None:
                wait = self._last_grant + self._min_interval - now
            if len(self._grants) >= self._limit:
                wait = max(wait, self._grants[0] + WINDOW_SECONDS - now)

            if wait > 0:
                logger.debug("rate_limiter.waiting", wait_seconds=round(wait, 3))
                await self._sleep(wait)
                now = self._clock()
                self._evict(now)
                # The oldest grant has aged out even if float rounding says otherwise.
                if len(self._grants) >= self._limit:
                    self._grants.popleft()

            self._grants.append(now)
            self._last_grant = now
