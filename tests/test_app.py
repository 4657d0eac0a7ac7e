"""Application wiring tests: lifespan state, health, metrics, request ids."""

from __future__ import annotations

from fastapi.testclient import TestClient

from src.voice_agent.main import create_app
from src.voice_agent.meetings.events import WebhookEventRouter
from src.voice_agent.voice.session import VoiceSessionStore


def test_lifespan_wires_components_on_app_state():
    app = create_app()

    with TestClient(app) as client:
        assert isinstance(app.state.session_store, VoiceSessionStore)
        assert isinstance(app.state.event_router, WebhookEventRouter)
        assert app.state.turn_processor is not None
        assert app.state.lifecycle is not None

        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_metrics_endpoint_exposes_voice_metrics():
    with TestClient(create_app()) as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "voice_agent_voice_turns" in response.text
    assert "voice_agent_active_voice_sessions" in response.text


def test_unsigned_webhook_rejected_end_to_end():
    with TestClient(create_app()) as client:
        response = client.post("/api/webhook", json={"type": "call.session_started"})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing signature or API key"}


def test_inbound_request_id_is_echoed():
    with TestClient(create_app()) as client:
        response = client.get("/health", headers={"X-Request-ID": "stream-delivery-7"})

    assert response.headers["X-Request-ID"] == "stream-delivery-7"


def test_http_metrics_use_route_template():
    with TestClient(create_app()) as client:
        client.get("/api/v1/sessions/meeting-unknown")
        response = client.get("/metrics")

    assert 'route="/api/v1/sessions/{meeting_id}"' in response.text
    assert "meeting-unknown" not in response.text
