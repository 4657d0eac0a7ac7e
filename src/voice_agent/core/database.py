"""Async SQLAlchemy engine and session factory.

Provides:
- Base: Declarative base for all persisted models (meetings, agents)
- get_engine(): Lazily created async engine singleton
- get_session(): AsyncSession generator used as repository session_factory
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.voice_agent.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for meeting and agent models."""


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the shared engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
