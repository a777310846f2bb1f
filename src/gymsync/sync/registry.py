"""Registry of sync managers, one per entity type.

Built once at startup from Settings and injected into the webhook pipeline,
the scheduler and the API. Resolves a webhook's board id to the manager for
that board and runs cross-entity sweeps.
"""

from __future__ import annotations

import structlog

from src.gymsync.boards.client import BoardClient
from src.gymsync.boards.mapping import EntityType
from src.gymsync.config import ConfigurationError, Settings
from src.gymsync.store.base import DocumentStore
from src.gymsync.sync.entities import get_profile
from src.gymsync.sync.guard import SyncGuard, SyncInProgressError
from src.gymsync.sync.manager import SyncManager
from src.gymsync.sync.ratelimit import RateLimiter
from src.gymsync.sync.schemas import EntitySyncStats, FullSyncReport, SyncReport, utc_now
from src.gymsync.sync.state import SyncStateStore

logger = structlog.get_logger(__name__)


class SyncRegistry:
    def __init__(self, managers: dict[EntityType, SyncManager]) -> None:
        self._managers = managers
        self._by_board = {m.board_id: m for m in managers.values() if m.board_id}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: DocumentStore,
        client: BoardClient | None,
        guard: SyncGuard,
        limiter: RateLimiter | None = None,
    ) -> SyncRegistry:
        """Build a manager for every entity type sharing one limiter and guard."""
        limiter = limiter or RateLimiter(
            requests_per_minute=settings.SYNC_REQUESTS_PER_MINUTE,
            min_interval_seconds=settings.SYNC_DELAY_MS / 1000.0,
        )
        board_ids = settings.board_ids()
        managers: dict[EntityType, SyncManager] = {}
        for entity_type in EntityType:
            profile = get_profile(entity_type)
            managers[entity_type] = SyncManager(
                entity_type=entity_type,
                board_id=board_ids.get(entity_type.value, ""),
                client=client,
                state=SyncStateStore(store, profile.collection),
                limiter=limiter,
                guard=guard,
                call_timeout=settings.SYNC_CALL_TIMEOUT_SECONDS,
                max_concurrency=settings.SYNC_MAX_CONCURRENCY,
                sweep_deadline=settings.SYNC_SWEEP_DEADLINE_SECONDS,
                page_size=settings.SYNC_PAGE_SIZE,
                country_code=settings.PHONE_COUNTRY_CODE,
                profile=profile,
            )
        return cls(managers)

    def get(self, entity_type: EntityType | str) -> SyncManager:
        """Manager for an entity type; ValueError for unknown names."""
        return self._managers[EntityType(entity_type)]

    def for_board(self, board_id: str | int | None) -> SyncManager | None:
        if board_id is None:
            return None
        return self._by_board.get(str(board_id))

    def configured(self) -> list[SyncManager]:
        """Managers whose board id is set."""
        return [m for m in self._managers.values() if m.board_id]

    def all(self) -> list[SyncManager]:
        return list(self._managers.values())

    async def sync_all_pending(self) -> list[SyncReport]:
        """Outbound sweep for every configured entity; in-progress entities are skipped."""
        reports: list[SyncReport] = []
        for manager in self.configured():
            try:
                reports.append(await manager.sync_all_pending())
            except SyncInProgressError:
                logger.info("sync.pending_sweep_skipped", entity_type=manager.entity_type.value)
        return reports

    async def sync_all(self) -> FullSyncReport:
        """Bidirectional sync across every configured entity type.

        A failure for one entity is recorded in the report and does not stop
        the others.
        """
        full = FullSyncReport()
        for manager in self.configured():
            entity = manager.entity_type.value
            try:
                outbound, inbound = await manager.perform_bidirectional_sync()
                full.reports.extend([outbound, inbound])
            except SyncInProgressError as exc:
                full.errors[entity] = str(exc)
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.exception("sync.entity_sync_failed", entity_type=entity)
                full.errors[entity] = str(exc)
        full.ended_at = utc_now()
        logger.info(
            "sync.full_sync_complete",
            total=full.total_processed,
            successful=full.successful,
            failed=full.failed,
            errors=len(full.errors),
        )
        return full

    async def stats(self) -> list[EntitySyncStats]:
        return [await m.stats() for m in self._managers.values()]

    async def is_sync_in_progress(self) -> tuple[bool, str | None]:
        """Whether any sweep is running, and for which entity type."""
        for manager in self._managers.values():
            if await manager.is_sync_in_progress():
                return True, manager.entity_type.value
        return False, None
