"""Webhook audit log stored in the document store.

Each delivery gets a record that moves received -> processed | error.
Writes are best-effort: a failing store is logged and never blocks or fails
webhook processing.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.gymsync.store.base import Document, DocumentStore
from src.gymsync.sync.schemas import utc_now

logger = structlog.get_logger(__name__)

WEBHOOK_LOGS_COLLECTION = "webhook_logs"


class WebhookAuditLog:
    def __init__(self, store: DocumentStore, source: str = "board") -> None:
        self._store = store
        self._source = source

    async def received(self, event_type: str, payload: Any) -> str | None:
        """Record a delivery; returns the log id, or None if the write failed."""
        try:
            doc = await self._store.insert(
                WEBHOOK_LOGS_COLLECTION,
                {
                    "source": self._source,
                    "event_type": event_type,
                    "payload": payload,
                    "status": "received",
                    "error_message": None,
                    "created_at": utc_now(),
                    "processed_at": None,
                },
            )
        except Exception as exc:
            logger.warning("webhook_audit.write_failed", stage="received", error=str(exc))
            return None
        return doc.id

    async def processed(self, log_id: str | None) -> None:
        await self._finish(log_id, "processed", None)

    async def failed(self, log_id: str | None, message: str) -> None:
        await self._finish(log_id, "error", message)

    async def _finish(self, log_id: str | None, status: str, message: str | None) -> None:
        if log_id is None:
            return
        try:
            await self._store.update(
                WEBHOOK_LOGS_COLLECTION,
                log_id,
                {"status": status, "error_message": message, "processed_at": utc_now()},
            )
        except Exception as exc:
            logger.warning("webhook_audit.write_failed", stage=status, log_id=log_id, error=str(exc))

    async def list_recent(self, limit: int = 100) -> list[Document]:
        """Most recent audit records, newest first."""
        return await self._store.list_ordered(
            WEBHOOK_LOGS_COLLECTION, "created_at", descending=True, limit=limit
        )
