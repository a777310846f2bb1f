"""Tests for application wiring (lifespan) and the health endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from src.gymsync.boards.client import BoardClient
from src.gymsync.boards.mapping import EntityType
from src.gymsync.config import get_settings
from src.gymsync.main import create_app


@pytest.fixture
def memory_env(monkeypatch):
    """Environment for a self-contained app: memory store, no scheduler."""
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("BOARD_API_TOKEN", "")
    monkeypatch.setenv("MEMBERS_BOARD_ID", "1001")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ── Lifespan ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_lifespan_builds_services(memory_env):
    """Startup attaches registry, pipeline and audit log; no token -> no board client."""
    app = create_app()

    async with app.router.lifespan_context(app):
        assert app.state.board_client is None
        assert app.state.webhook_pipeline is not None
        assert app.state.webhook_audit_log is not None
        assert app.state.sync_scheduler.running is False
        configured = [m.entity_type for m in app.state.sync_registry.configured()]
        assert configured == [EntityType.members]


@pytest.mark.asyncio
async def test_lifespan_with_token_builds_board_client(memory_env, monkeypatch):
    monkeypatch.setenv("BOARD_API_TOKEN", "tok")
    get_settings.cache_clear()
    app = create_app()

    async with app.router.lifespan_context(app):
        assert isinstance(app.state.board_client, BoardClient)


@pytest.mark.asyncio
async def test_routes_served_through_full_stack(memory_env):
    """Health, metrics and the webhook handshake answer through all middleware."""
    app = create_app()

    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            health = await client.get("/api/v1/health")
            ready = await client.get("/api/v1/health/ready")
            metrics = await client.get("/metrics")
            handshake = await client.post("/api/v1/webhooks/board", json={"challenge": "abc"})
            no_client = await client.get("/api/v1/sync/connection")

    assert health.json() == {"status": "ok", "environment": "development"}
    assert "X-Request-ID" in health.headers
    assert ready.status_code == 200
    assert ready.json()["checks"] == {"database": "skipped", "redis": "skipped", "board_client": "not_configured"}
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text
    assert handshake.json() == {"challenge": "abc"}
    assert no_client.status_code == 503


# ── Readiness ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_readiness_degraded_when_database_down(monkeypatch):
    """STORE_BACKEND=sql with an unreachable database -> 503."""
    from fastapi import FastAPI

    from src.gymsync.api.v1.health import router

    monkeypatch.setenv("STORE_BACKEND", "sql")
    get_settings.cache_clear()
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")

    broken = MagicMock(side_effect=ConnectionRefusedError("connection refused"))
    try:
        with patch("src.gymsync.api.v1.health.get_engine", broken):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/api/v1/health/ready")
    finally:
        get_settings.cache_clear()

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "error"
    assert "connection refused" in data["checks"]["database_error"]


# ── Request IDs ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_id_echoed_or_generated(memory_env):
    """A sane caller X-Request-ID is reused; a malformed one is replaced."""
    app = create_app()

    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            reused = await client.get("/api/v1/health", headers={"X-Request-ID": "req-42"})
            replaced = await client.get("/api/v1/health", headers={"X-Request-ID": "bad id!"})

    assert reused.headers["X-Request-ID"] == "req-42"
    assert replaced.headers["X-Request-ID"] not in ("bad id!", "")
