"""Cache invalidation signal polled by downstream read caches.

mark_invalidated() stamps "now" (epoch milliseconds); should_invalidate(t)
answers whether anything was invalidated after a client's last cache fill.

- CacheInvalidationSignal: process-local timestamp, single-instance deployments.
- RedisCacheInvalidationSignal: shared key, so every serving process agrees.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class InvalidationSignal(ABC):
    @abstractmethod
    async def mark_invalidated(self) -> int:
        """Stamp the current time and return it."""
        ...

    @abstractmethod
    async def last_invalidation(self) -> int:
        """Most recent invalidation time in epoch ms (0 if never)."""
        ...

    async def should_invalidate(self, last_known_time: int | float) -> bool:
        return await self.last_invalidation() > last_known_time


class CacheInvalidationSignal(InvalidationSignal):
    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._invalidated_at = 0

    async def mark_invalidated(self) -> int:
        # Timestamps never move backwards, even if the wall clock does.
        self._invalidated_at = max(self._invalidated_at, self._clock())
        logger.info("cache.invalidated", invalidated_at=self._invalidated_at)
        return self._invalidated_at

    async def last_invalidation(self) -> int:
        return self._invalidated_at


class RedisCacheInvalidationSignal(InvalidationSignal):
    """Shared invalidation timestamp stored in Redis.

    Args:
        redis_client: redis.asyncio client (decode_responses=True).
        key: Redis key holding the timestamp.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        key: str = "gymsync:cache:invalidated_at",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._redis = redis_client
        self._key = key
        self._clock = clock

    async def mark_invalidated(self) -> int:
        stamp = self._clock()
        await self._redis.set(self._key, stamp)
        logger.info("cache.invalidated", invalidated_at=stamp, backend="redis")
        return stamp

    async def last_invalidation(self) -> int:
        value = await self._redis.get(self._key)
        return int(value) if value is not None else 0
