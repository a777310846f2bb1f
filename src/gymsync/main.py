"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, lifespan
events that build the sync services, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.gymsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.gymsync.api.v1.router import router as v1_router
from src.gymsync.boards.client import BoardClient
from src.gymsync.cache.signal import CacheInvalidationSignal, InvalidationSignal, RedisCacheInvalidationSignal
from src.gymsync.config import LockBackend, Settings, SignalBackend, StoreBackend, get_settings
from src.gymsync.core.database import close_db, get_session_factory, init_db
from src.gymsync.core.monitoring import MetricsMiddleware, get_metrics_response
from src.gymsync.core.redis import close_redis, get_redis_pool
from src.gymsync.store import DocumentStore, InMemoryDocumentStore
from src.gymsync.store.sql import SQLDocumentStore
from src.gymsync.sync import LocalSyncGuard, RateLimiter, RedisSyncGuard, SyncGuard, SyncRegistry
from src.gymsync.sync.scheduler import SyncScheduler
from src.gymsync.webhooks import InventoryWatcher, WebhookAuditLog, WebhookAuthenticator, WebhookPipeline

logger = structlog.get_logger(__name__)


async def _build_store(settings: Settings) -> DocumentStore:
    if settings.STORE_BACKEND == StoreBackend.memory:
        logger.warning("startup.memory_store", hint="Records are lost on restart")
        return InMemoryDocumentStore()
    await init_db()
    return SQLDocumentStore(get_session_factory())


def _build_guard(settings: Settings) -> SyncGuard:
    if settings.SYNC_LOCK_BACKEND == LockBackend.redis:
        return RedisSyncGuard(get_redis_pool())
    return LocalSyncGuard()


def _build_signal(settings: Settings) -> InvalidationSignal:
    if settings.CACHE_SIGNAL_BACKEND == SignalBackend.redis:
        return RedisCacheInvalidationSignal(get_redis_pool())
    return CacheInvalidationSignal()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build services on startup, close them on shutdown."""
    settings = get_settings()
    configure_structlog()
    app.state.settings = settings

    store = await _build_store(settings)

    limiter = RateLimiter(
        requests_per_minute=settings.SYNC_REQUESTS_PER_MINUTE,
        min_interval_seconds=settings.SYNC_DELAY_MS / 1000.0,
    )

    # Board client is optional: without a token, webhooks still audit and
    # apply events but every outbound call reports a configuration error.
    board_client: BoardClient | None = None
    if settings.board_sync_enabled:
        board_client = BoardClient.from_settings(settings, before_retry=limiter.acquire)
    else:
        logger.warning("startup.board_client_disabled", hint="Set BOARD_API_TOKEN to enable outbound sync")
    app.state.board_client = board_client

    missing = settings.missing_board_ids(list(settings.board_ids()))
    if missing:
        logger.info("startup.boards_unconfigured", settings=missing)

    registry = SyncRegistry.from_settings(
        settings,
        store=store,
        client=board_client,
        guard=_build_guard(settings),
        limiter=limiter,
    )
    app.state.sync_registry = registry

    signal = _build_signal(settings)
    audit_log = WebhookAuditLog(store)
    app.state.cache_signal = signal
    app.state.webhook_audit_log = audit_log
    app.state.webhook_pipeline = WebhookPipeline(
        authenticator=WebhookAuthenticator(settings.BOARD_WEBHOOK_SECRET),
        registry=registry,
        audit_log=audit_log,
        inventory=InventoryWatcher(signal, low_stock_threshold=settings.LOW_STOCK_THRESHOLD),
    )

    scheduler = SyncScheduler(
        registry,
        interval_seconds=settings.SYNC_INTERVAL_SECONDS,
        full_sync_hour=settings.SYNC_FULL_SYNC_HOUR,
    )
    scheduler.start()
    app.state.sync_scheduler = scheduler

    logger.info(
        "startup.complete",
        store=settings.STORE_BACKEND.value,
        configured_entities=[m.entity_type.value for m in registry.configured()],
        scheduler=scheduler.running,
    )

    yield

    scheduler.stop()
    if board_client is not None:
        await board_client.close()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Gym Board Sync API",
        version="0.1.0",
        description="Bidirectional sync between gym records and board items",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Include v1 API router (health, webhooks, sync)
    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
