"""Per-entity sync manager -- outbound push, inbound apply, sweeps.

Record state machine:
    pending --push ok--> synced      pending --push failed--> error
    error --next sweep--> retried    synced/error --local edit--> pending
    any but archive_pending --inbound apply--> synced
    archive --> pending + archive_pending --board archive ok--> synced

Outbound updates fall back to create only when the board reports the item
missing (BoardItemNotFoundError). Any other failure marks the record error
and leaves remote_item_id intact; the next sweep retries it.

Every remote call goes through the shared RateLimiter and a per-call
timeout. Sweeps hold the entity's SyncGuard and never abort on an individual
record failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from src.gymsync.boards.client import BoardClient
from src.gymsync.boards.codec import decode, decode_columns, encode_record
from src.gymsync.boards.errors import BoardItemNotFoundError, BoardTransientError
from src.gymsync.boards.mapping import EntityType, column_lookup
from src.gymsync.config import ConfigurationError
from src.gymsync.core.monitoring import sync_results_total
from src.gymsync.store.base import Document
from src.gymsync.sync.entities import EntityProfile, get_profile
from src.gymsync.sync.guard import SyncGuard
from src.gymsync.sync.ratelimit import RateLimiter
from src.gymsync.sync.schemas import (
    EntitySyncStats,
    SyncAction,
    SyncDirection,
    SyncItemResult,
    SyncReport,
    SyncStatus,
    WebhookEvent,
    WebhookEventType,
)
from src.gymsync.sync.state import SyncStateStore, business_fields, to_sync_record

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_ARCHIVED_STATES = ("archived", "deleted")


class SyncManager:
    """Synchronizes one entity type between the document store and its board.

    Args:
        entity_type: Entity handled by this manager.
        board_id: Remote board id; empty means not configured.
        client: Board client, None when no API token is configured.
        state: Sync state store over the entity's collection.
        limiter: Shared rate limiter for remote calls.
        guard: In-flight guard for sweeps.
        call_timeout: Seconds before a single remote call is abandoned.
        max_concurrency: Outbound worker pool size (1 = sequential).
        sweep_deadline: Seconds a sweep may run before remaining records are skipped (0 = none).
        page_size: Items per page on inbound sweeps.
        country_code: Phone country hint for the codec.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        entity_type: EntityType,
        board_id: str,
        client: BoardClient | None,
        state: SyncStateStore,
        limiter: RateLimiter,
        guard: SyncGuard,
        call_timeout: float = 30.0,
        max_concurrency: int = 1,
        sweep_deadline: float = 0.0,
        page_size: int = 100,
        country_code: str = "MX",
        profile: EntityProfile | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.entity_type = entity_type
        self.board_id = board_id
        self._client = client
        self._state = state
        self._limiter = limiter
        self._guard = guard
        self._call_timeout = call_timeout
        self._max_concurrency = max(1, max_concurrency)
        self._sweep_deadline = sweep_deadline
        self._page_size = page_size
        self._country_code = country_code
        self._profile = profile or get_profile(entity_type)
        self._columns = column_lookup(entity_type)
        self._clock = clock

    @property
    def profile(self) -> EntityProfile:
        return self._profile

    @property
    def state(self) -> SyncStateStore:
        return self._state

    # ── Preconditions ───────────────────────────────────────────────────

    def _require_board(self) -> str:
        if not self.board_id:
            raise ConfigurationError(
                f"{self.entity_type.value.upper()}_BOARD_ID is not configured"
            )
        return self.board_id

    def _require_client(self) -> BoardClient:
        if self._client is None:
            raise ConfigurationError("BOARD_API_TOKEN environment variable is not set")
        return self._client

    async def _call(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Pace, then run one remote call under the per-call timeout."""
        await self._limiter.acquire()
        try:
            return await asyncio.wait_for(fn(*args), timeout=self._call_timeout)
        except asyncio.TimeoutError as exc:
            raise BoardTransientError(
                f"Board call timed out after {self._call_timeout}s"
            ) from exc

    def _record(self, direction: SyncDirection, result: SyncItemResult) -> SyncItemResult:
        sync_results_total.labels(
            entity_type=self.entity_type.value,
            direction=direction.value,
            outcome=result.action.value,
        ).inc()
        return result

    # ── Local Changes ───────────────────────────────────────────────────

    async def create_local(self, data: dict[str, Any]) -> Document:
        """Create a business record; it starts pending."""
        return await self._state.create(data)

    async def record_local_change(self, local_id: str, changes: dict[str, Any]) -> Document:
        """Apply a local edit; the record returns to pending."""
        return await self._state.mark_pending(local_id, changes)

    # ── Outbound ────────────────────────────────────────────────────────

    async def sync_one(self, local_id: str, force: bool = False) -> SyncItemResult:
        """Push one record to the board.

        A record already synced with a remote id is left alone unless force
        is set, so repeating the call performs no extra mutation.
        A soft-deleted record whose board archive has not landed yet is
        archived instead of updated.

        Raises:
            ConfigurationError: If the board id or API token is missing.
        """
        board_id = self._require_board()
        client = self._require_client()

        doc = await self._state.get(local_id)
        if doc is None:
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(
                    local_id=local_id, action=SyncAction.SKIPPED, success=True, error="not found"
                ),
            )

        record = to_sync_record(doc)
        if record.archive_pending and record.remote_item_id:
            return await self._archive(client, local_id, record.remote_item_id)
        if not force and record.sync_status == SyncStatus.SYNCED and record.remote_item_id:
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(
                    local_id=local_id,
                    remote_item_id=record.remote_item_id,
                    action=SyncAction.UNCHANGED,
                    success=True,
                ),
            )

        data = business_fields(doc)
        payload = encode_record(self.entity_type, data, self._country_code)

        try:
            if record.remote_item_id:
                try:
                    remote_id = await self._call(
                        client.update_item, board_id, record.remote_item_id, payload.column_values
                    )
                    action = SyncAction.UPDATED
                except BoardItemNotFoundError:
                    logger.warning(
                        "sync.remote_item_missing",
                        entity_type=self.entity_type.value,
                        local_id=local_id,
                        remote_item_id=record.remote_item_id,
                    )
                    remote_id = await self._create_remote(client, board_id, local_id, data, payload.column_values)
                    action = SyncAction.CREATED
            else:
                remote_id = await self._create_remote(client, board_id, local_id, data, payload.column_values)
                action = SyncAction.CREATED
        except Exception as exc:
            await self._state.mark_error(local_id, str(exc))
            logger.error(
                "sync.outbound_error",
                entity_type=self.entity_type.value,
                local_id=local_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(
                    local_id=local_id,
                    remote_item_id=record.remote_item_id,
                    action=SyncAction.FAILED,
                    success=False,
                    error=str(exc),
                ),
            )

        await self._state.mark_synced(local_id, remote_id, synced_version=doc.version)
        logger.info(
            "sync.outbound_ok",
            entity_type=self.entity_type.value,
            local_id=local_id,
            remote_item_id=remote_id,
            action=action.value,
        )
        return self._record(
            SyncDirection.OUTBOUND,
            SyncItemResult(local_id=local_id, remote_item_id=remote_id, action=action, success=True),
        )

    async def _create_remote(
        self,
        client: BoardClient,
        board_id: str,
        local_id: str,
        data: dict[str, Any],
        column_values: dict[str, Any],
    ) -> str:
        item_name = self._profile.build_item_name(local_id, data)
        return await self._call(client.create_item, board_id, item_name, column_values)

    async def _sync_one_safe(self, local_id: str) -> SyncItemResult:
        """sync_one for batch use: unexpected errors become a failed result."""
        try:
            return await self.sync_one(local_id)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception(
                "sync.outbound_unexpected_error",
                entity_type=self.entity_type.value,
                local_id=local_id,
            )
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(local_id=local_id, action=SyncAction.FAILED, success=False, error=str(exc)),
            )

    async def sync_all_pending(self) -> SyncReport:
        """Push every pending or errored record under the in-flight guard.

        Raises:
            SyncInProgressError: If a sweep for this entity is running.
            ConfigurationError: If the board id or API token is missing.
        """
        self._require_board()
        self._require_client()
        async with self._guard.hold(self.entity_type.value):
            return await self._outbound_sweep()

    async def _outbound_sweep(self) -> SyncReport:
        report = SyncReport(entity_type=self.entity_type.value, direction=SyncDirection.OUTBOUND.value)
        docs = await self._state.list_by_status(SyncStatus.PENDING)
        docs += await self._state.list_by_status(SyncStatus.ERROR)
        local_ids = [d.id for d in docs]
        deadline = self._deadline()

        logger.info(
            "sync.outbound_started",
            entity_type=self.entity_type.value,
            records=len(local_ids),
            concurrency=self._max_concurrency,
        )

        if self._max_concurrency == 1:
            for local_id in local_ids:
                report.add(await self._guarded_step(local_id, deadline))
        else:
            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def worker(local_id: str) -> SyncItemResult:
                async with semaphore:
                    return await self._guarded_step(local_id, deadline)

            for result in await asyncio.gather(*(worker(i) for i in local_ids)):
                report.add(result)

        report.finish()
        logger.info(
            "sync.outbound_complete",
            entity_type=self.entity_type.value,
            total=report.total_processed,
            successful=report.successful,
            failed=report.failed,
            skipped=report.skipped,
        )
        return report

    async def _guarded_step(self, local_id: str, deadline: float | None) -> SyncItemResult:
        if self._expired(deadline):
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(
                    local_id=local_id,
                    action=SyncAction.SKIPPED,
                    success=True,
                    error="sweep deadline exceeded",
                ),
            )
        return await self._sync_one_safe(local_id)

    async def archive_remote(self, local_id: str) -> SyncItemResult:
        """Soft-delete a record locally and archive its board item.

        The record carries ``archive_pending`` until the board confirms the
        archive; a failed archive is retried by the next outbound sweep.
        """
        client = self._require_client()
        doc = await self._state.get(local_id)
        if doc is None:
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(local_id=local_id, action=SyncAction.SKIPPED, success=True, error="not found"),
            )

        remote_id = doc.get("remote_item_id")
        await self._state.soft_delete(
            local_id, self._profile.deleted_status, archive_pending=bool(remote_id)
        )
        if not remote_id:
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(local_id=local_id, action=SyncAction.DELETED, success=True),
            )
        return await self._archive(client, local_id, remote_id)

    async def _archive(self, client: BoardClient, local_id: str, remote_id: str) -> SyncItemResult:
        try:
            await self._call(client.archive_item, remote_id)
        except BoardItemNotFoundError:
            logger.info("sync.archive_item_already_gone", local_id=local_id, remote_item_id=remote_id)
        except Exception as exc:
            await self._state.mark_error(local_id, str(exc))
            logger.error(
                "sync.archive_error",
                entity_type=self.entity_type.value,
                local_id=local_id,
                remote_item_id=remote_id,
                error=str(exc),
            )
            return self._record(
                SyncDirection.OUTBOUND,
                SyncItemResult(
                    local_id=local_id,
                    remote_item_id=remote_id,
                    action=SyncAction.FAILED,
                    success=False,
                    error=str(exc),
                ),
            )

        await self._state.mark_archived(local_id)
        logger.info(
            "sync.archive_ok",
            entity_type=self.entity_type.value,
            local_id=local_id,
            remote_item_id=remote_id,
        )
        return self._record(
            SyncDirection.OUTBOUND,
            SyncItemResult(local_id=local_id, remote_item_id=remote_id, action=SyncAction.DELETED, success=True),
        )

    # ── Inbound ─────────────────────────────────────────────────────────

    async def apply_remote_item(self, item: dict[str, Any]) -> SyncItemResult:
        """Apply a full remote item: update the matching record or create one."""
        item_id = str(item["id"])
        if str(item.get("state") or "").lower() in _ARCHIVED_STATES:
            return await self._apply_delete(item_id)

        fields = decode_columns(self.entity_type, item.get("column_values") or [])
        name = item.get("name")
        if self._profile.name_field and name:
            fields[self._profile.name_field] = name
        return await self._upsert(item_id, name or "", fields)

    async def _upsert(self, item_id: str, item_name: str, fields: dict[str, Any]) -> SyncItemResult:
        doc = await self._state.find_by_remote_id(item_id)
        if doc is not None:
            await self._state.apply_remote(doc.id, fields, item_id)
            return self._record(
                SyncDirection.INBOUND,
                SyncItemResult(local_id=doc.id, remote_item_id=item_id, action=SyncAction.UPDATED, success=True),
            )

        data = {**self._profile.inbound_defaults(item_id, item_name), **fields}
        created = await self._state.create(data, remote_item_id=item_id)
        logger.info(
            "sync.inbound_created",
            entity_type=self.entity_type.value,
            local_id=created.id,
            remote_item_id=item_id,
        )
        return self._record(
            SyncDirection.INBOUND,
            SyncItemResult(local_id=created.id, remote_item_id=item_id, action=SyncAction.CREATED, success=True),
        )

    async def _apply_delete(self, item_id: str) -> SyncItemResult:
        doc = await self._state.find_by_remote_id(item_id)
        if doc is None:
            return self._record(
                SyncDirection.INBOUND,
                SyncItemResult(remote_item_id=item_id, action=SyncAction.SKIPPED, success=True, error="not found"),
            )
        await self._state.soft_delete(doc.id, self._profile.deleted_status)
        logger.info(
            "sync.inbound_soft_deleted",
            entity_type=self.entity_type.value,
            local_id=doc.id,
            remote_item_id=item_id,
        )
        return self._record(
            SyncDirection.INBOUND,
            SyncItemResult(local_id=doc.id, remote_item_id=item_id, action=SyncAction.DELETED, success=True),
        )

    async def sync_one_from_remote(self, item_id: str) -> SyncItemResult:
        """Fetch one item from the board and apply it locally."""
        client = self._require_client()
        try:
            item = await self._call(client.get_item, str(item_id))
        except BoardItemNotFoundError:
            return self._record(
                SyncDirection.INBOUND,
                SyncItemResult(remote_item_id=str(item_id), action=SyncAction.SKIPPED, success=True, error="not found"),
            )
        return await self.apply_remote_item(item)

    async def apply_remote_event(self, event: WebhookEvent) -> SyncItemResult:
        """Apply a webhook event to the local store.

        Column changes touch only the changed field. An event for an item with
        no local counterpart creates the record, fetching the full item when a
        client is available.
        """
        if event.event_type == WebhookEventType.ITEM_DELETED:
            return await self._apply_delete(event.item_id)

        fields: dict[str, Any] = {}
        if event.event_type == WebhookEventType.COLUMN_VALUE_CHANGED and event.column_id:
            if event.column_id == "name":
                if self._profile.name_field and event.new_value:
                    fields[self._profile.name_field] = str(event.new_value)
            else:
                mapping = self._columns.get(event.column_id)
                if mapping is not None:
                    value = decode(mapping.value_kind, event.new_value)
                    if value is not None:
                        fields[mapping.local_field] = value
                else:
                    logger.debug(
                        "sync.inbound_unmapped_column",
                        entity_type=self.entity_type.value,
                        column_id=event.column_id,
                    )

        existing = await self._state.find_by_remote_id(event.item_id)
        if existing is None and self._client is not None:
            return await self.sync_one_from_remote(event.item_id)

        if event.event_type == WebhookEventType.ITEM_CREATED and self._profile.name_field and event.item_name:
            fields.setdefault(self._profile.name_field, event.item_name)
        return await self._upsert(event.item_id, event.item_name or "", fields)

    async def full_sync_from_remote(self) -> SyncReport:
        """Apply every item on the board under the in-flight guard.

        Raises:
            SyncInProgressError: If a sweep for this entity is running.
            ConfigurationError: If the board id or API token is missing.
        """
        self._require_board()
        self._require_client()
        async with self._guard.hold(self.entity_type.value):
            return await self._inbound_sweep()

    async def _inbound_sweep(self) -> SyncReport:
        board_id = self._require_board()
        client = self._require_client()
        report = SyncReport(entity_type=self.entity_type.value, direction=SyncDirection.INBOUND.value)
        deadline = self._deadline()

        logger.info("sync.inbound_started", entity_type=self.entity_type.value, board_id=board_id)

        try:
            async for item in client.iter_board_items(
                board_id, self._page_size, before_request=self._limiter.acquire
            ):
                if self._expired(deadline):
                    report.add(
                        self._record(
                            SyncDirection.INBOUND,
                            SyncItemResult(
                                remote_item_id=str(item.get("id")),
                                action=SyncAction.SKIPPED,
                                success=True,
                                error="sweep deadline exceeded",
                            ),
                        )
                    )
                    continue
                try:
                    report.add(await self.apply_remote_item(item))
                except Exception as exc:
                    logger.error(
                        "sync.inbound_error",
                        entity_type=self.entity_type.value,
                        remote_item_id=item.get("id"),
                        error=str(exc),
                    )
                    report.add(
                        self._record(
                            SyncDirection.INBOUND,
                            SyncItemResult(
                                remote_item_id=str(item.get("id")),
                                action=SyncAction.FAILED,
                                success=False,
                                error=str(exc),
                            ),
                        )
                    )
        except Exception as exc:
            # Listing the board itself failed; report what was applied so far.
            logger.error(
                "sync.inbound_listing_failed",
                entity_type=self.entity_type.value,
                board_id=board_id,
                error=str(exc),
            )
            report.listing_error = str(exc)

        report.finish()
        logger.info(
            "sync.inbound_complete",
            entity_type=self.entity_type.value,
            total=report.total_processed,
            successful=report.successful,
            failed=report.failed,
            listing_error=report.listing_error,
        )
        return report

    async def perform_bidirectional_sync(self) -> tuple[SyncReport, SyncReport]:
        """Outbound sweep, then inbound sweep, under one guard hold.

        Pushing first lets locally pending creates get their remote ids
        before the inbound sweep sees those items.
        """
        self._require_board()
        self._require_client()
        async with self._guard.hold(self.entity_type.value):
            outbound = await self._outbound_sweep()
            inbound = await self._inbound_sweep()
        return outbound, inbound

    # ── Status ──────────────────────────────────────────────────────────

    async def is_sync_in_progress(self) -> bool:
        return await self._guard.in_progress(self.entity_type.value)

    async def stats(self) -> EntitySyncStats:
        return EntitySyncStats(
            entity_type=self.entity_type.value,
            total=await self._state.count(),
            synced=await self._state.count(SyncStatus.SYNCED),
            pending=await self._state.count(SyncStatus.PENDING),
            error=await self._state.count(SyncStatus.ERROR),
            in_progress=await self.is_sync_in_progress(),
        )

    # ── Deadline ────────────────────────────────────────────────────────

    def _deadline(self) -> float | None:
        if self._sweep_deadline <= 0:
            return None
        return self._clock() + self._sweep_deadline

    def _expired(self, deadline: float | None) -> bool:
        return deadline is not None and self._clock() >= deadline
