"""FastAPI dependencies resolving services from app.state.

Services are constructed once in the application lifespan and attached to
app.state; these helpers return them or raise 503 when a service was not
initialized (for example, no board API token configured).
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request, status

from src.gymsync.cache.signal import InvalidationSignal
from src.gymsync.config import Settings, get_settings
from src.gymsync.sync.registry import SyncRegistry
from src.gymsync.webhooks.audit import WebhookAuditLog
from src.gymsync.webhooks.pipeline import WebhookPipeline


def get_sync_registry(request: Request) -> SyncRegistry:
    """Retrieve SyncRegistry from app.state, 503 if not available."""
    registry = getattr(request.app.state, "sync_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync registry not initialized",
        )
    return registry


def get_webhook_pipeline(request: Request) -> WebhookPipeline:
    """Retrieve WebhookPipeline from app.state, 503 if not available."""
    pipeline = getattr(request.app.state, "webhook_pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook pipeline not initialized",
        )
    return pipeline


def get_audit_log(request: Request) -> WebhookAuditLog:
    audit_log = getattr(request.app.state, "webhook_audit_log", None)
    if audit_log is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook audit log not initialized",
        )
    return audit_log


def get_cache_signal(request: Request) -> InvalidationSignal:
    signal = getattr(request.app.state, "cache_signal", None)
    if signal is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache invalidation signal not initialized",
        )
    return signal


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def require_admin_key(request: Request) -> None:
    """Check X-API-Key against ADMIN_API_KEY when one is configured.

    Raises:
        HTTPException(401): If the key is missing or wrong.
    """
    expected = get_app_settings(request).ADMIN_API_KEY
    if not expected:
        return
    supplied = request.headers.get("X-API-Key", "")
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
