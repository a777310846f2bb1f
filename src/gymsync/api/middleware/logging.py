"""Structured request logging.

Every request gets a request id: the caller's ``X-Request-ID`` when it
looks sane (the board platform and most proxies send one), otherwise a new
UUID. The id is bound into structlog's contextvars for the duration of the
request, so log lines emitted by sync managers and the webhook pipeline
carry it without threading it through call signatures.

JSON output in production, console output everywhere else.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.gymsync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

# Scraped every few seconds; not worth a log line each time.
_QUIET_PATHS = frozenset({"/metrics"})


def configure_structlog() -> None:
    """Configure stdlib logging and structlog for the current environment."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def resolve_request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if _REQUEST_ID_RE.match(supplied):
        return supplied
    return str(uuid.uuid4())


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its status and duration, echo X-Request-ID."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request)
        path = request.url.path
        quiet = path in _QUIET_PATHS
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "http.request_failed",
                    method=request.method,
                    path=path,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            if quiet and response.status_code < 400:
                return response

            status = response.status_code
            if status >= 500:
                log = logger.error
            elif status >= 400:
                log = logger.warning
            else:
                log = logger.info
            log(
                "http.request_completed",
                method=request.method,
                path=path,
                status_code=status,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
        return response
