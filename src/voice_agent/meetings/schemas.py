"""Pydantic v2 schemas for meetings and the agents that attend them.

Meetings and agents are owned by the surrounding product; this service only
reads them, applies guarded status transitions, and records artifact URLs
delivered by call-provider webhooks.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# A session_started event may only activate a meeting outside these states.
NON_ACTIVATABLE_STATUSES: frozenset[MeetingStatus] = frozenset({
    MeetingStatus.ACTIVE,
    MeetingStatus.COMPLETED,
    MeetingStatus.CANCELLED,
    MeetingStatus.PROCESSING,
})


# ── Entities ─────────────────────────────────────────────────────────────────


class Agent(BaseModel):
    """AI agent definition; its id doubles as the call participant id."""

    id: str
    name: str
    user_id: str
    instructions: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Meeting(BaseModel):
    """Meeting between a user and one agent, backed by one provider call."""

    id: str
    name: str
    user_id: str
    agent_id: str
    status: MeetingStatus = MeetingStatus.UPCOMING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    transcript_url: str | None = None
    recording_url: str | None = None
    summary: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Transcript Records ──────────────────────────────────────────────────────


class TranscriptLine(BaseModel):
    """One record of a provider transcript artifact (JSONL)."""

    text: str = Field(min_length=1)
    speaker_id: str = Field(min_length=1)
    type: str | None = None
    start_ts: float | None = None
    stop_ts: float | None = None
