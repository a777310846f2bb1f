"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness only
probes the backends this deployment is configured to use: the database when
STORE_BACKEND=sql, Redis when either coordination backend is redis.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.gymsync.config import LockBackend, SignalBackend, StoreBackend, get_settings
from src.gymsync.core.database import get_engine
from src.gymsync.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database and Redis connectivity where configured. Returns check results dict."""
    settings = get_settings()
    checks: dict = {"database": "skipped", "redis": "skipped"}

    if settings.STORE_BACKEND == StoreBackend.sql:
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = "error"
            checks["database_error"] = str(e)

    if settings.SYNC_LOCK_BACKEND == LockBackend.redis or settings.CACHE_SIGNAL_BACKEND == SignalBackend.redis:
        try:
            redis = get_redis_pool()
            pong = await redis.ping()
            checks["redis"] = "ok" if pong else "error"
            if not pong:
                checks["redis_error"] = "PING did not return PONG"
        except Exception as e:
            checks["redis"] = "error"
            checks["redis_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies configured backends and that sync services initialized.

    Returns 200 if all pass, 503 if any critical dependency fails.
    """
    checks = await _check_dependencies()
    checks["board_client"] = "ok" if getattr(request.app.state, "board_client", None) else "not_configured"
    all_healthy = checks["database"] in ("ok", "skipped") and checks["redis"] in ("ok", "skipped")

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
