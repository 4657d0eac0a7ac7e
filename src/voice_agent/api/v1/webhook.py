"""Stream Video webhook receiver.

Authenticates the request (x-signature / x-api-key headers, HMAC of the raw
body), parses the JSON envelope and hands the event to the
WebhookEventRouter on app.state. Authentication and parsing both happen
before any state is touched.

Mounted at /api/v1/webhook and at /api/webhook, the path the provider
dashboard is usually configured with.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from src.voice_agent.core.monitoring import webhook_events_total
from src.voice_agent.errors import AuthenticationFailure, ParseFailure, ValidationFailure
from src.voice_agent.meetings.events import HANDLED_EVENT_TYPES, WebhookResult

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])


def _get_stream_client(request: Request) -> Any:
    """Retrieve StreamClient from app.state, 503 if not available."""
    client = getattr(request.app.state, "stream_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stream client not initialized",
        )
    return client


def _get_event_router(request: Request) -> Any:
    """Retrieve WebhookEventRouter from app.state, 503 if not available."""
    event_router = getattr(request.app.state, "event_router", None)
    if event_router is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook event router not initialized",
        )
    return event_router


def _event_label(event_type: str) -> str:
    """Metric label for an event type; free-form types collapse to "other"."""
    if not event_type:
        return "unknown"
    return event_type if event_type in HANDLED_EVENT_TYPES else "other"


def _respond(event_type: str, result: WebhookResult) -> JSONResponse:
    webhook_events_total.labels(
        event_type=_event_label(event_type),
        status_code=str(result.status_code),
    ).inc()
    return JSONResponse(status_code=result.status_code, content=result.body)


async def _read_event(request: Request) -> dict:
    """Authenticate the request and decode its JSON object body.

    Raises:
        ValidationFailure: If the signature or API key header is missing.
        AuthenticationFailure: If the signature does not match the body.
        ParseFailure: If the body is not a JSON object.
    """
    signature = request.headers.get("x-signature")
    api_key = request.headers.get("x-api-key")
    if not signature or not api_key:
        raise ValidationFailure("Missing signature or API key")

    stream_client = _get_stream_client(request)
    body = await request.body()
    if not stream_client.verify_webhook(body, signature):
        raise AuthenticationFailure("Invalid signature")

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ParseFailure("Invalid JSON") from exc
    if not isinstance(payload, dict):
        raise ParseFailure("Invalid JSON")
    return payload


@router.post("/v1/webhook")
@router.post("/webhook", include_in_schema=False)
async def receive_webhook(request: Request) -> JSONResponse:
    """Receive one Stream Video call event.

    Returns 400 for missing auth headers or an unparseable body, 401 for a
    bad signature, and otherwise whatever the event router decided. A
    failure inside event processing is logged and acknowledged with 200 so
    the provider does not redeliver.
    """
    try:
        payload = await _read_event(request)
    except AuthenticationFailure as exc:
        logger.warning("webhook.invalid_signature")
        return _respond("", WebhookResult.error(401, str(exc)))
    except (ValidationFailure, ParseFailure) as exc:
        logger.warning("webhook.rejected", error=str(exc))
        return _respond("", WebhookResult.error(400, str(exc)))

    event_type = payload.get("type")
    if not isinstance(event_type, str):
        event_type = ""
    logger.info("webhook.received", event_type=event_type)

    event_router = _get_event_router(request)
    try:
        result = await event_router.dispatch(event_type, payload)
    except Exception:
        logger.error("webhook.handler_error", event_type=event_type, exc_info=True)
        result = WebhookResult.ok()

    return _respond(event_type, result)
