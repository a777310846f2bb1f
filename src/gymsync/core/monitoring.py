"""Prometheus metrics for the sync service.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Counters and histograms for board API calls, sync outcomes, codec
  omissions, webhook events and low-stock alerts
- track_board_call(): Context manager timing a remote board call
- get_metrics_response(): Response body for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Board API Metrics ────────────────────────────────────────────────────────

board_requests_total = Counter(
    "board_api_requests_total",
    "Total remote board API calls",
    ["operation", "outcome"],
)

board_request_duration_seconds = Histogram(
    "board_api_request_duration_seconds",
    "Remote board API call duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_results_total = Counter(
    "sync_results_total",
    "Per-record sync outcomes",
    ["entity_type", "direction", "outcome"],
)

sync_in_progress = Gauge(
    "sync_in_progress",
    "Whether a sweep is currently running for an entity type",
    ["entity_type"],
)

codec_omitted_fields_total = Counter(
    "codec_omitted_fields_total",
    "Local fields dropped from an outbound payload because they could not be encoded",
    ["entity_type", "field"],
)

codec_number_coercions_total = Counter(
    "codec_number_coercions_total",
    "Non-numeric remote values decoded as 0",
)

# ── Webhook Metrics ──────────────────────────────────────────────────────────

webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound webhook deliveries",
    ["event_type", "outcome"],
)

low_stock_alerts_total = Counter(
    "low_stock_alerts_total",
    "Low-stock alerts raised from inventory changes",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Board Call Helper ────────────────────────────────────────────────────────


@asynccontextmanager
async def track_board_call(operation: str) -> AsyncGenerator[None, None]:
    """Record duration and outcome of one remote board call.

    Usage:
        async with track_board_call("create_item"):
            data = await self._execute(...)
    """
    start_time = time.perf_counter()
    outcome = "success"

    try:
        yield
    except Exception as exc:
        outcome = type(exc).__name__
        raise
    finally:
        board_request_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start_time
        )
        board_requests_total.labels(operation=operation, outcome=outcome).inc()


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
