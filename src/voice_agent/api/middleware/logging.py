"""structlog configuration and per-request access logging.

Every request gets a request id, reused from an inbound X-Request-ID header
(Stream retries carry their own) or generated otherwise. The id is bound to
structlog's context variables, so webhook and voice-turn log lines emitted
while handling the request carry it without threading it through calls.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.voice_agent.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Request ids longer than this from a client are replaced, not echoed
_MAX_INBOUND_ID_LENGTH = 128


def configure_structlog() -> None:
    """Route structlog through stdlib logging at the configured level.

    Production renders one JSON object per line; every other environment
    uses the colored console renderer.
    """
    settings = get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _request_id(request: Request) -> str:
    inbound = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if inbound and len(inbound) <= _MAX_INBOUND_ID_LENGTH:
        return inbound
    return uuid.uuid4().hex


def _level_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warning"
    return "info"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one access line per request and echoes the request id header."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id(request)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        getattr(logger, _level_for(response.status_code))(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
