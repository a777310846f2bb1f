"""Sync engine -- per-entity managers keeping the document store and boards consistent.

Provides:
- SyncManager: outbound push, inbound apply, sweeps for one entity type
- SyncRegistry: managers keyed by entity type and board id
- SyncStateStore: version-checked sync state transitions
- RateLimiter: shared pacing for remote calls
- LocalSyncGuard / RedisSyncGuard: one sweep per entity type at a time
- SyncScheduler: APScheduler jobs for periodic sweeps
"""

from src.gymsync.sync.guard import LocalSyncGuard, RedisSyncGuard, SyncGuard, SyncInProgressError
from src.gymsync.sync.manager import SyncManager
from src.gymsync.sync.ratelimit import RateLimiter
from src.gymsync.sync.registry import SyncRegistry
from src.gymsync.sync.state import SyncStateStore

__all__ = [
    "LocalSyncGuard",
    "RateLimiter",
    "RedisSyncGuard",
    "SyncGuard",
    "SyncInProgressError",
    "SyncManager",
    "SyncRegistry",
    "SyncStateStore",
]
