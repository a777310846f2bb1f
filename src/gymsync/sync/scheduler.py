"""Background scheduler for sync sweeps.

Wraps an APScheduler AsyncIOScheduler with two jobs:
- Pending drain every SYNC_INTERVAL_SECONDS (outbound sweep per configured entity)
- Daily full bidirectional sync at SYNC_FULL_SYNC_HOUR:00

A job that finds a sweep already running logs and skips; the next tick
picks the work up.

Exports:
    SyncScheduler: Async scheduler driving the registry's sweeps.
"""

from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.gymsync.sync.registry import SyncRegistry

logger = structlog.get_logger(__name__)


class SyncScheduler:
    """Lightweight scheduler for periodic sync sweeps.

    Args:
        registry: SyncRegistry holding the per-entity managers.
        interval_seconds: Pending-drain interval; 0 disables the scheduler.
        full_sync_hour: Hour of day (0-23) for the daily bidirectional sync.
    """

    def __init__(
        self,
        registry: SyncRegistry,
        interval_seconds: int = 300,
        full_sync_hour: int = 3,
    ) -> None:
        self._registry = registry
        self._interval_seconds = interval_seconds
        self._full_sync_hour = full_sync_hour
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> bool:
        """Start the scheduler. Returns False when disabled or nothing is configured."""
        if self._interval_seconds <= 0:
            logger.info("sync_scheduler.disabled", reason="SYNC_INTERVAL_SECONDS is 0")
            return False
        if not self._registry.configured():
            logger.info("sync_scheduler.disabled", reason="no board ids configured")
            return False

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            self.drain_pending,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id="sync_drain_pending",
            name="Push pending records to the board",
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.add_job(
            self.full_sync,
            trigger=CronTrigger(hour=self._full_sync_hour, minute=0),
            id="sync_daily_full",
            name="Daily bidirectional sync for all entity types",
            misfire_grace_time=3600,
            max_instances=1,
        )

        self._scheduler.start()
        self._started = True
        logger.info(
            "sync_scheduler.started",
            interval_seconds=self._interval_seconds,
            full_sync_hour=self._full_sync_hour,
            entities=[m.entity_type.value for m in self._registry.configured()],
        )
        return True

    async def drain_pending(self) -> None:
        """Outbound sweep for every configured entity type."""
        try:
            reports = await self._registry.sync_all_pending()
        except Exception as exc:
            logger.error("sync_scheduler.drain_failed", error=str(exc))
            return
        logger.info(
            "sync_scheduler.drain_complete",
            entities=len(reports),
            processed=sum(r.total_processed for r in reports),
            failed=sum(r.failed for r in reports),
        )

    async def full_sync(self) -> None:
        """Bidirectional sync for every configured entity type."""
        try:
            report = await self._registry.sync_all()
        except Exception as exc:
            logger.error("sync_scheduler.full_sync_failed", error=str(exc))
            return
        logger.info(
            "sync_scheduler.full_sync_complete",
            processed=report.total_processed,
            failed=report.failed,
            skipped_entities=list(report.errors),
        )

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("sync_scheduler.stopped")


__all__ = ["SyncScheduler"]
