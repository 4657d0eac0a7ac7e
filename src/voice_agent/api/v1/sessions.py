"""Read-only views of in-memory voice sessions.

Lets the meeting UI (or an operator) see whether the agent is attached to
a call and fetch the URLs of the replies it has spoken so far.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


class SessionSummaryResponse(BaseModel):
    meeting_id: str
    agent_user_id: str
    call_type: str
    in_flight: bool
    history_length: int
    response_count: int
    created_at: str


class AudioResponseItem(BaseModel):
    text: str
    audio_url: str
    timestamp: str


class LatestAudioResponse(BaseModel):
    meeting_id: str
    audio_url: str


def _get_session_store(request: Request) -> Any:
    """Retrieve VoiceSessionStore from app.state, 503 if not available."""
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store not initialized",
        )
    return store


def _get_turn_processor(request: Request) -> Any:
    """Retrieve TurnProcessor from app.state, 503 if not available."""
    processor = getattr(request.app.state, "turn_processor", None)
    if processor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Turn processor not initialized",
        )
    return processor


def _require_session(request: Request, meeting_id: str) -> Any:
    session = _get_session_store(request).get(meeting_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return session


@router.get("/{meeting_id}", response_model=SessionSummaryResponse)
async def get_session(meeting_id: str, request: Request) -> SessionSummaryResponse:
    session = _require_session(request, meeting_id)
    return SessionSummaryResponse(
        meeting_id=session.session_id,
        agent_user_id=session.agent_user_id,
        call_type=session.call_type,
        in_flight=session.in_flight,
        history_length=len(session.history),
        response_count=len(session.audio_responses),
        created_at=session.created_at.isoformat(),
    )


@router.get("/{meeting_id}/responses", response_model=list[AudioResponseItem])
async def list_responses(meeting_id: str, request: Request) -> list[AudioResponseItem]:
    """All recorded replies for the session, oldest first."""
    _require_session(request, meeting_id)
    responses = _get_turn_processor(request).audio_responses(meeting_id)
    return [
        AudioResponseItem(
            text=r.text,
            audio_url=r.audio_url,
            timestamp=r.timestamp.isoformat(),
        )
        for r in responses
    ]


@router.get("/{meeting_id}/responses/latest", response_model=LatestAudioResponse)
async def latest_response(meeting_id: str, request: Request) -> LatestAudioResponse:
    """URL of the most recent reply; 404 until the agent has replied."""
    _require_session(request, meeting_id)
    audio_url = _get_turn_processor(request).latest_audio_url(meeting_id)
    if audio_url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No responses yet",
        )
    return LatestAudioResponse(meeting_id=meeting_id, audio_url=audio_url)
