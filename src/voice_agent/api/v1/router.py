"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.voice_agent.api.v1 import health, sessions, webhook

router = APIRouter()

router.include_router(health.router)
router.include_router(webhook.router)
router.include_router(sessions.router)
