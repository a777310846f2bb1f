"""Inbound webhook pipeline.

handle(raw_body, headers) runs one delivery end to end:
1. Handshake: a {"challenge": ...} body is echoed before any signature check.
2. Signature: invalid (and not skipped) -> 401.
3. Parse: malformed JSON or event -> 400.
4. Audit: best-effort "received" record.
5. Route by board id to the entity's SyncManager; unknown boards -> 200, ignored.
6. Product board events also drive the inventory watcher.
7. Success -> audit "processed", 200. Handler exception -> audit "error", 500.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.gymsync.boards.mapping import EntityType
from src.gymsync.core.monitoring import webhook_events_total
from src.gymsync.sync.registry import SyncRegistry
from src.gymsync.webhooks.audit import WebhookAuditLog
from src.gymsync.webhooks.auth import WebhookAuthenticator, challenge_response, extract_signature
from src.gymsync.webhooks.events import WebhookPayloadError, parse_webhook_event
from src.gymsync.webhooks.inventory import InventoryWatcher

logger = structlog.get_logger(__name__)


class WebhookResponse(BaseModel):
    status_code: int = 200
    body: dict[str, Any] = Field(default_factory=dict)


class WebhookPipeline:
    """Authenticates, audits and routes board webhook deliveries.

    Args:
        authenticator: Signature verifier.
        registry: Sync managers keyed by board id.
        audit_log: Best-effort delivery log.
        inventory: Side effects for product board events.
    """

    def __init__(
        self,
        authenticator: WebhookAuthenticator,
        registry: SyncRegistry,
        audit_log: WebhookAuditLog,
        inventory: InventoryWatcher,
    ) -> None:
        self._auth = authenticator
        self._registry = registry
        self._audit = audit_log
        self._inventory = inventory

    async def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        body: Any = None
        parse_error: str | None = None
        try:
            body = json.loads(raw_body or b"null")
        except ValueError as exc:
            parse_error = str(exc)

        echo = challenge_response(body)
        if echo is not None:
            logger.info("webhook.challenge_answered")
            return WebhookResponse(status_code=200, body=echo)

        verification = self._auth.verify(raw_body, extract_signature(headers))
        if not verification.valid:
            logger.warning("webhook.signature_invalid", error=verification.error)
            webhook_events_total.labels(event_type="unknown", outcome="unauthorized").inc()
            return WebhookResponse(
                status_code=401,
                body={"success": False, "error": verification.error or "invalid signature"},
            )

        if parse_error is not None:
            logger.warning("webhook.invalid_json", error=parse_error)
            webhook_events_total.labels(event_type="unknown", outcome="bad_request").inc()
            return WebhookResponse(status_code=400, body={"success": False, "error": "invalid JSON body"})

        try:
            event = parse_webhook_event(body)
        except WebhookPayloadError as exc:
            logger.warning("webhook.invalid_event", error=str(exc))
            log_id = await self._audit.received("invalid", body)
            await self._audit.failed(log_id, str(exc))
            webhook_events_total.labels(event_type="unknown", outcome="bad_request").inc()
            return WebhookResponse(status_code=400, body={"success": False, "error": str(exc)})

        event_type = event.event_type.value
        log_id = await self._audit.received(event.raw_type or event_type, body)

        manager = self._registry.for_board(event.board_id)
        if manager is None:
            logger.info("webhook.unknown_board", board_id=event.board_id, event_type=event_type)
            await self._audit.processed(log_id)
            webhook_events_total.labels(event_type=event_type, outcome="ignored").inc()
            return WebhookResponse(body={"success": True, "ignored": True, "message": "Unknown board"})

        try:
            result = await manager.apply_remote_event(event)
            low_stock = False
            if manager.entity_type == EntityType.inventory:
                low_stock = await self._inventory.handle(event)
        except Exception as exc:
            logger.exception(
                "webhook.processing_failed",
                board_id=event.board_id,
                item_id=event.item_id,
                event_type=event_type,
            )
            await self._audit.failed(log_id, str(exc))
            webhook_events_total.labels(event_type=event_type, outcome="error").inc()
            return WebhookResponse(
                status_code=500,
                body={"success": False, "error": "Webhook processing failed"},
            )

        await self._audit.processed(log_id)
        webhook_events_total.labels(event_type=event_type, outcome="processed").inc()
        logger.info(
            "webhook.processed",
            entity_type=manager.entity_type.value,
            item_id=event.item_id,
            event_type=event_type,
            action=result.action.value,
        )
        response: dict[str, Any] = {
            "success": True,
            "message": "Webhook processed successfully",
            "action": result.action.value,
        }
        if low_stock:
            response["low_stock"] = True
        return WebhookResponse(body=response)
