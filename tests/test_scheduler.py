"""Tests for SyncScheduler job wiring and job resilience."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.gymsync.sync.scheduler import SyncScheduler


def _registry(configured: bool = True) -> MagicMock:
    registry = MagicMock()
    manager = MagicMock()
    manager.entity_type.value = "members"
    registry.configured.return_value = [manager] if configured else []
    registry.sync_all_pending = AsyncMock(return_value=[])
    registry.sync_all = AsyncMock()
    return registry


class TestSyncScheduler:
    @pytest.mark.asyncio
    async def test_registers_two_jobs(self):
        scheduler = SyncScheduler(_registry(), interval_seconds=60, full_sync_hour=4)

        started = scheduler.start()

        try:
            assert started is True
            assert scheduler.running is True
            job_ids = {j.id for j in scheduler._scheduler.get_jobs()}
            assert job_ids == {"sync_drain_pending", "sync_daily_full"}
        finally:
            scheduler.stop()
        assert scheduler.running is False

    def test_zero_interval_disables(self):
        scheduler = SyncScheduler(_registry(), interval_seconds=0)
        assert scheduler.start() is False
        scheduler.stop()

    def test_nothing_configured_disables(self):
        scheduler = SyncScheduler(_registry(configured=False), interval_seconds=60)
        assert scheduler.start() is False

    @pytest.mark.asyncio
    async def test_drain_failure_is_contained(self):
        registry = _registry()
        registry.sync_all_pending = AsyncMock(side_effect=RuntimeError("store down"))
        scheduler = SyncScheduler(registry)

        await scheduler.drain_pending()

        registry.sync_all_pending.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_full_sync_failure_is_contained(self):
        registry = _registry()
        registry.sync_all = AsyncMock(side_effect=RuntimeError("board down"))
        scheduler = SyncScheduler(registry)

        await scheduler.full_sync()

        registry.sync_all.assert_awaited_once()
