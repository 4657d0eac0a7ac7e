"""API middleware package."""

from src.voice_agent.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
