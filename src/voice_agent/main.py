"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
a lifespan that wires the voice agent components onto app.state, and the
API routers.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.voice_agent.config import get_settings
from src.voice_agent.core.database import close_db, get_session
from src.voice_agent.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.voice_agent.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.voice_agent.api.v1.router import router as v1_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire components on startup, close DB on shutdown."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Session registry and core collaborators ─────────────────────────
    # The webhook boundary and session endpoints resolve everything from
    # app.state and answer 503 for whatever failed to come up.
    from src.voice_agent.meetings.repository import MeetingRepository
    from src.voice_agent.services.notifier import InngestNotifier
    from src.voice_agent.services.stream_client import StreamClient
    from src.voice_agent.voice.session import VoiceSessionStore

    app.state.session_store = VoiceSessionStore()
    app.state.meeting_repository = MeetingRepository(session_factory=get_session)
    app.state.stream_client = StreamClient(
        api_key=settings.STREAM_API_KEY,
        api_secret=settings.STREAM_API_SECRET,
        base_url=settings.STREAM_BASE_URL,
    )
    app.state.notifier = InngestNotifier(
        event_key=settings.INNGEST_EVENT_KEY,
        base_url=settings.INNGEST_BASE_URL,
    )
    if not settings.STREAM_API_SECRET:
        log.warning("voice.stream_secret_missing")

    # ── Reply generation (LLM, TTS, asset storage) ──────────────────────
    try:
        from src.voice_agent.services.llm import LLMService

        app.state.llm_service = LLMService(settings)
    except Exception:
        log.warning("voice.llm_init_failed", exc_info=True)
        app.state.llm_service = None

    try:
        from src.voice_agent.services.tts import build_synthesizer

        app.state.synthesizer = build_synthesizer(settings)
    except Exception:
        log.warning("voice.tts_init_failed", exc_info=True)
        app.state.synthesizer = None

    try:
        from src.voice_agent.services.asset_store import build_asset_store

        app.state.asset_store = build_asset_store(settings)
    except Exception:
        log.warning("voice.asset_store_init_failed", exc_info=True)
        app.state.asset_store = None

    # ── Session lifecycle, turn pipeline and event routing ──────────────
    try:
        from src.voice_agent.meetings.events import WebhookEventRouter
        from src.voice_agent.voice.lifecycle import SessionLifecycleManager
        from src.voice_agent.voice.turns import TurnProcessor

        if app.state.llm_service is None:
            raise RuntimeError("LLM service unavailable")

        lifecycle = SessionLifecycleManager(
            store=app.state.session_store,
            repository=app.state.meeting_repository,
            stream_client=app.state.stream_client,
        )
        turn_processor = TurnProcessor(
            store=app.state.session_store,
            llm_service=app.state.llm_service,
            synthesizer=app.state.synthesizer,
            asset_store=app.state.asset_store,
            llm_timeout_s=settings.VOICE_LLM_TIMEOUT_SECONDS,
            tts_timeout_s=settings.VOICE_TTS_TIMEOUT_SECONDS,
            publish_timeout_s=settings.VOICE_PUBLISH_TIMEOUT_SECONDS,
            max_prompt_messages=settings.VOICE_MAX_HISTORY_MESSAGES,
        )
        app.state.lifecycle = lifecycle
        app.state.turn_processor = turn_processor
        app.state.event_router = WebhookEventRouter(
            repository=app.state.meeting_repository,
            store=app.state.session_store,
            lifecycle=lifecycle,
            turns=turn_processor,
            stream_client=app.state.stream_client,
            notifier=app.state.notifier,
        )
        log.info(
            "voice.initialized",
            tts_enabled=app.state.synthesizer is not None,
            asset_store_enabled=app.state.asset_store is not None,
            notifier_enabled=app.state.notifier.enabled,
        )
    except Exception:
        log.warning("voice.init_failed", exc_info=True)
        app.state.lifecycle = None
        app.state.turn_processor = None
        app.state.event_router = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    # Sessions are in-memory only and are not carried across restarts.
    store = getattr(app.state, "session_store", None)
    if store is not None and len(store):
        log.info("voice.sessions_dropped", count=len(store))

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meeting Voice Agent",
        version="0.1.0",
        description="Webhook-driven conversational voice agent for video calls",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
