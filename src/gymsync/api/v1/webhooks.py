"""Webhook endpoints for the board platform.

POST /webhooks/board receives change events (and the subscription handshake);
GET /webhooks/board doubles as a health probe and the product cache-check
side channel; GET /webhooks/logs lists recent deliveries.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.gymsync.api.deps import get_audit_log, get_cache_signal, get_webhook_pipeline
from src.gymsync.cache.signal import InvalidationSignal
from src.gymsync.webhooks.audit import WebhookAuditLog
from src.gymsync.webhooks.pipeline import WebhookPipeline

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/board")
async def receive_board_webhook(
    request: Request,
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
) -> JSONResponse:
    """Authenticate and apply one board event.

    The raw body is read before any parsing so the signature is checked over
    the exact bytes the platform signed.
    """
    raw_body = await request.body()
    result = await pipeline.handle(raw_body, request.headers)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.get("/board")
async def board_webhook_status(
    request: Request,
    last_cache_time: int = Query(default=0, alias="lastCacheTime"),
    signal: InvalidationSignal = Depends(get_cache_signal),
) -> dict[str, Any]:
    """Endpoint status, or a cache-check answer when X-Cache-Check is sent."""
    last_invalidation = await signal.last_invalidation()
    if request.headers.get("X-Cache-Check"):
        return {
            "shouldInvalidate": await signal.should_invalidate(last_cache_time),
            "lastInvalidation": last_invalidation,
        }
    return {"message": "Board webhook endpoint", "lastInvalidation": last_invalidation}


@router.get("/logs")
async def list_webhook_logs(
    limit: int = Query(default=100, ge=1, le=500),
    audit_log: WebhookAuditLog = Depends(get_audit_log),
) -> dict[str, Any]:
    """Most recent webhook deliveries, newest first."""
    docs = await audit_log.list_recent(limit=limit)
    return {"success": True, "data": [{"id": d.id, **d.data} for d in docs]}
