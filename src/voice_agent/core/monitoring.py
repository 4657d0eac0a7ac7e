"""Prometheus metrics and Sentry setup for the voice agent service.

All metrics live under the ``voice_agent`` namespace:
- HTTP traffic, labelled by route template rather than raw path so
  per-meeting URLs do not explode label cardinality
- webhook acknowledgments by event type and status code
- voice turns by outcome, turn latency, and active session count
- LLM calls, latency and token usage (see track_llm_call)
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

NAMESPACE = "voice_agent"

# ── HTTP ─────────────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route template and status",
    ["method", "route", "status_code"],
    namespace=NAMESPACE,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route template",
    ["method", "route"],
    namespace=NAMESPACE,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0),
)

# ── Webhooks & Voice Sessions ────────────────────────────────────────────────

webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook events acknowledged, by event type and response status",
    ["event_type", "status_code"],
    namespace=NAMESPACE,
)

voice_turns_total = Counter(
    "voice_turns_total",
    "Voice turns by outcome (completed, skipped_*, discarded, failed)",
    ["outcome"],
    namespace=NAMESPACE,
)

voice_turn_duration_seconds = Histogram(
    "voice_turn_duration_seconds",
    "Wall time of turns that got past the single-flight guard",
    namespace=NAMESPACE,
    buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0, 60.0),
)

active_voice_sessions = Gauge(
    "active_voice_sessions",
    "Voice sessions currently held in memory",
    namespace=NAMESPACE,
)

# ── LLM ──────────────────────────────────────────────────────────────────────

llm_requests_total = Counter(
    "llm_requests_total",
    "LLM completions by model group and status",
    ["model", "status"],
    namespace=NAMESPACE,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM completion latency",
    ["model"],
    namespace=NAMESPACE,
    buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0),
)

llm_tokens_used_total = Counter(
    "llm_tokens_used_total",
    "LLM tokens consumed",
    ["model", "token_type"],
    namespace=NAMESPACE,
)


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency for every route except /metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        # The route is only resolved once the router has run
        route = _route_template(request)
        http_requests_total.labels(
            method=request.method,
            route=route,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(method=request.method, route=route).observe(elapsed)
        return response


@asynccontextmanager
async def track_llm_call(model: str) -> AsyncGenerator[dict[str, Any], None]:
    """Time an LLM call and record its status and token usage.

    The caller fills ``prompt_tokens`` / ``completion_tokens`` on the
    yielded dict when the provider reports usage. An exception escaping the
    block is counted as an error and re-raised.
    """
    usage: dict[str, Any] = {"prompt_tokens": 0, "completion_tokens": 0}
    started = time.perf_counter()
    status = "success"
    try:
        yield usage
    except Exception:
        status = "error"
        raise
    finally:
        llm_requests_total.labels(model=model, status=status).inc()
        llm_request_duration_seconds.labels(model=model).observe(time.perf_counter() - started)
        for token_type in ("prompt", "completion"):
            count = usage.get(f"{token_type}_tokens") or 0
            if count:
                llm_tokens_used_total.labels(model=model, token_type=token_type).inc(count)


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry error reporting with the FastAPI integration."""
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        # Webhook payloads carry participant names and spoken text
        send_default_pii=False,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )
    logger.info("sentry.initialized", environment=environment)


def get_metrics_response() -> Response:
    """Prometheus text exposition of the default registry."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
