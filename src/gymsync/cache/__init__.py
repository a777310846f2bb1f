"""Read-cache invalidation signal (in-process or Redis-backed)."""

from src.gymsync.cache.signal import (
    CacheInvalidationSignal,
    InvalidationSignal,
    RedisCacheInvalidationSignal,
)

__all__ = ["CacheInvalidationSignal", "InvalidationSignal", "RedisCacheInvalidationSignal"]
