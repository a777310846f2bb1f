"""Pydantic schemas for the sync engine -- state, results, reports, webhook events.

Defines:
- Enums: SyncStatus, SyncAction, SyncDirection, WebhookEventType
- SyncRecord: per-record sync metadata stored alongside each business record
- SyncItemResult / SyncReport / FullSyncReport: batch run outcomes
- WebhookEvent: normalized inbound change notification
- EntitySyncStats: per-entity counts for the status endpoint
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class SyncStatus(str, Enum):
    """Outbound sync state of a local record."""

    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class SyncAction(str, Enum):
    """What a single sync attempt did."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class WebhookEventType(str, Enum):
    """Normalized webhook event kinds."""

    ITEM_CREATED = "item_created"
    COLUMN_VALUE_CHANGED = "column_value_changed"
    ITEM_DELETED = "item_deleted"


# ── Sync State ──────────────────────────────────────────────────────────────


class SyncRecord(BaseModel):
    """Sync metadata for one business record.

    Stored as top-level fields of the business document so the record and
    its sync state are written together under one version.
    """

    local_id: str
    remote_item_id: str | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    last_synced_at: datetime | None = None
    archive_pending: bool = False
    version: int = 1


# ── Reports ─────────────────────────────────────────────────────────────────


class SyncItemResult(BaseModel):
    """Outcome of syncing one record in one direction."""

    local_id: str | None = None
    remote_item_id: str | None = None
    action: SyncAction
    success: bool
    error: str | None = None


class SyncReport(BaseModel):
    """Batch sync outcome. Immutable once returned by the manager."""

    entity_type: str
    direction: str
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    results: list[SyncItemResult] = Field(default_factory=list)
    listing_error: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_processed(self) -> int:
        return len(self.results)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success and r.action != SyncAction.SKIPPED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.action == SyncAction.SKIPPED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def add(self, result: SyncItemResult) -> None:
        self.results.append(result)

    def finish(self) -> SyncReport:
        self.ended_at = utc_now()
        return self


class FullSyncReport(BaseModel):
    """Combined outcome of a bidirectional sync across entity types."""

    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    reports: list[SyncReport] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_processed(self) -> int:
        return sum(r.total_processed for r in self.reports)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def successful(self) -> int:
        return sum(r.successful for r in self.reports)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return sum(r.failed for r in self.reports)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


# ── Webhook Events ──────────────────────────────────────────────────────────


class WebhookEvent(BaseModel):
    """Inbound change notification from the board platform."""

    event_type: WebhookEventType
    board_id: str
    item_id: str
    item_name: str | None = None
    column_id: str | None = None
    new_value: Any = None
    previous_value: Any = None
    raw_type: str | None = None
    received_at: datetime = Field(default_factory=utc_now)


# ── Stats ───────────────────────────────────────────────────────────────────


class EntitySyncStats(BaseModel):
    entity_type: str
    total: int = 0
    synced: int = 0
    pending: int = 0
    error: int = 0
    in_progress: bool = False
