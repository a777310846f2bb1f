"""Sync state persistence over the document store.

Sync metadata (remote_item_id, sync_status, sync_error, last_synced_at,
archive_pending) lives as top-level fields of each business document. Every
transition is a read-compute-write guarded by the document version; a
VersionConflictError re-reads and recomputes, so a local edit racing an
inbound apply is never silently overwritten.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from src.gymsync.store.base import Document, DocumentNotFoundError, DocumentStore, VersionConflictError
from src.gymsync.sync.schemas import SyncRecord, SyncStatus, utc_now

logger = structlog.get_logger(__name__)

SYNC_FIELDS = ("remote_item_id", "sync_status", "sync_error", "last_synced_at", "archive_pending")

ChangeBuilder = Callable[[Document], dict[str, Any]]


def to_sync_record(doc: Document) -> SyncRecord:
    """Project the sync metadata out of a business document."""
    return SyncRecord(
        local_id=doc.id,
        remote_item_id=doc.get("remote_item_id"),
        sync_status=doc.get("sync_status") or SyncStatus.PENDING,
        sync_error=doc.get("sync_error"),
        last_synced_at=doc.get("last_synced_at"),
        archive_pending=bool(doc.get("archive_pending")),
        version=doc.version,
    )


def business_fields(doc: Document) -> dict[str, Any]:
    """Document body without sync metadata."""
    return {k: v for k, v in doc.data.items() if k not in SYNC_FIELDS}


class SyncStateStore:
    """Sync state transitions for one entity collection.

    Args:
        store: System-of-record document store.
        collection: Collection holding the entity's documents.
        conflict_retries: Attempts before a persistent version conflict propagates.
    """

    def __init__(self, store: DocumentStore, collection: str, conflict_retries: int = 5) -> None:
        self._store = store
        self._collection = collection
        self._conflict_retries = conflict_retries

    @property
    def collection(self) -> str:
        return self._collection

    async def get(self, local_id: str) -> Document | None:
        return await self._store.get(self._collection, local_id)

    async def find_by_remote_id(self, remote_item_id: str) -> Document | None:
        return await self._store.find_by_field(
            self._collection, "remote_item_id", str(remote_item_id)
        )

    async def list_by_status(self, status: SyncStatus, limit: int | None = None) -> list[Document]:
        return await self._store.query(self._collection, {"sync_status": status.value}, limit=limit)

    async def count(self, status: SyncStatus | None = None) -> int:
        filters = {"sync_status": status.value} if status else None
        return await self._store.count(self._collection, filters)

    # ── Transitions ─────────────────────────────────────────────────────

    async def create(
        self,
        data: dict[str, Any],
        remote_item_id: str | None = None,
        local_id: str | None = None,
    ) -> Document:
        """Insert a business record with its sync metadata.

        Records created locally start pending; records created from a remote
        item start synced and carry the item id.
        """
        now = utc_now()
        body = {
            **{k: v for k, v in data.items() if k not in SYNC_FIELDS},
            "created_at": data.get("created_at") or now,
            "updated_at": now,
            "remote_item_id": str(remote_item_id) if remote_item_id else None,
            "sync_status": (SyncStatus.SYNCED if remote_item_id else SyncStatus.PENDING).value,
            "sync_error": None,
            "last_synced_at": now if remote_item_id else None,
        }
        doc = await self._store.insert(self._collection, body, doc_id=local_id)
        logger.info(
            "sync_state.created",
            collection=self._collection,
            local_id=doc.id,
            sync_status=body["sync_status"],
        )
        return doc

    async def mark_pending(self, local_id: str, changes: dict[str, Any] | None = None) -> Document:
        """Apply a local edit and queue the record for outbound sync."""
        edits = {k: v for k, v in (changes or {}).items() if k not in SYNC_FIELDS}
        return await self._transition(
            local_id,
            lambda _doc: {
                **edits,
                "updated_at": utc_now(),
                "sync_status": SyncStatus.PENDING.value,
                "sync_error": None,
            },
        )

    async def mark_synced(
        self,
        local_id: str,
        remote_item_id: str,
        synced_version: int | None = None,
    ) -> Document:
        """Record a successful outbound sync.

        When synced_version is given and the document has been edited since
        that version, only the remote id is attached and the record stays
        pending so the newer edit is pushed on the next sweep.
        """

        def build(doc: Document) -> dict[str, Any]:
            changes: dict[str, Any] = {"remote_item_id": str(remote_item_id)}
            edited_since = synced_version is not None and doc.version != synced_version
            if edited_since and doc.get("sync_status") == SyncStatus.PENDING.value:
                return changes
            changes.update(
                sync_status=SyncStatus.SYNCED.value,
                sync_error=None,
                last_synced_at=utc_now(),
            )
            return changes

        return await self._transition(local_id, build)

    async def mark_error(self, local_id: str, message: str) -> Document:
        return await self._transition(
            local_id,
            lambda _doc: {"sync_status": SyncStatus.ERROR.value, "sync_error": message[:1000]},
        )

    async def apply_remote(
        self,
        local_id: str,
        fields: dict[str, Any],
        remote_item_id: str,
    ) -> Document:
        """Merge fields decoded from the remote item and mark the record synced.

        A record still waiting for its board item to be archived keeps its
        local soft-delete; remote values are not merged until the archive lands.
        """

        def build(doc: Document) -> dict[str, Any]:
            if doc.get("archive_pending"):
                logger.info(
                    "sync_state.remote_ignored_archive_pending",
                    collection=self._collection,
                    local_id=local_id,
                )
                return {"updated_at": utc_now()}
            return {
                **{k: v for k, v in fields.items() if k not in SYNC_FIELDS},
                "updated_at": utc_now(),
                "remote_item_id": str(remote_item_id),
                "sync_status": SyncStatus.SYNCED.value,
                "sync_error": None,
                "last_synced_at": utc_now(),
            }

        return await self._transition(local_id, build)

    async def soft_delete(
        self,
        local_id: str,
        status_value: str,
        archive_pending: bool = False,
    ) -> Document:
        """Flag the record deleted without removing it; sync metadata is kept.

        With archive_pending the record stays ``pending`` until its board item
        is archived; without it the remote side is already gone.
        """
        status = SyncStatus.PENDING if archive_pending else SyncStatus.SYNCED
        return await self._transition(
            local_id,
            lambda doc: {
                "status": status_value,
                "updated_at": utc_now(),
                "sync_status": status.value,
                "sync_error": None,
                "archive_pending": archive_pending,
                "last_synced_at": doc.get("last_synced_at") if archive_pending else utc_now(),
            },
        )

    async def mark_archived(self, local_id: str) -> Document:
        """The board item of a soft-deleted record is archived (or already gone)."""
        return await self._transition(
            local_id,
            lambda _doc: {
                "sync_status": SyncStatus.SYNCED.value,
                "sync_error": None,
                "archive_pending": False,
                "last_synced_at": utc_now(),
            },
        )

    async def _transition(self, local_id: str, build: ChangeBuilder) -> Document:
        """Read, compute changes from the current document, write with a version check."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._conflict_retries),
            retry=retry_if_exception_type(VersionConflictError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "sync_state.version_conflict_retry",
                        collection=self._collection,
                        local_id=local_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                doc = await self._store.get(self._collection, local_id)
                if doc is None:
                    raise DocumentNotFoundError(self._collection, local_id)
                updated = await self._store.update(
                    self._collection,
                    local_id,
                    build(doc),
                    expected_version=doc.version,
                )
        return updated
