"""Liveness and readiness probes for the voice agent service.

Readiness only gates on what webhooks cannot work without: the meetings
database and the Stream webhook secret.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.voice_agent.config import get_settings
from src.voice_agent.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Process is up. Touches nothing external."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and which integrations are configured."""
    settings = get_settings()
    checks: dict = {"database": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    checks["stream"] = "ok" if settings.STREAM_API_SECRET else "no_keys"
    llm_service = getattr(request.app.state, "llm_service", None)
    checks["litellm"] = "ok" if llm_service is not None and llm_service.router else "no_keys"
    checks["tts"] = "ok" if getattr(request.app.state, "synthesizer", None) else "disabled"
    checks["asset_store"] = "ok" if getattr(request.app.state, "asset_store", None) else "disabled"

    session_store = getattr(request.app.state, "session_store", None)
    checks["active_sessions"] = len(session_store) if session_store is not None else 0
    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: database reachable and webhook secret configured.

    Returns 200 if both pass, 503 otherwise. Missing TTS or asset storage
    only degrades replies to text and does not fail readiness.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks["database"] == "ok" and checks["stream"] == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
