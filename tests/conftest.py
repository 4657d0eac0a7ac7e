"""Shared fixtures for voice agent tests.

Provides:
- InMemoryMeetingRepository: test double for MeetingRepository with the
  same guarded status transitions, plus call counters
- ScriptedLLM / RecordingSynthesizer / RecordingAssetStore fakes
- Wired VoiceSessionStore, SessionLifecycleManager, TurnProcessor and
  WebhookEventRouter instances backed by the fakes above
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.voice_agent.meetings.events import WebhookEventRouter
from src.voice_agent.meetings.schemas import (
    NON_ACTIVATABLE_STATUSES,
    Agent,
    Meeting,
    MeetingStatus,
)
from src.voice_agent.voice.lifecycle import SessionLifecycleManager
from src.voice_agent.voice.session import VoiceSessionStore
from src.voice_agent.voice.turns import TurnProcessor

AGENT_ID = "agent-ava"
MEETING_ID = "meeting-123"
USER_ID = "user-42"
INSTRUCTIONS = "You are Ava, a friendly interview coach."


# ── In-Memory Repository ────────────────────────────────────────────────────


class InMemoryMeetingRepository:
    """In-memory test double for MeetingRepository."""

    def __init__(self) -> None:
        self.meetings: dict[str, Meeting] = {}
        self.agents: dict[str, Agent] = {}
        self.meeting_lookups = 0
        self.agent_lookups = 0

    def add_agent(self, agent_id: str = AGENT_ID, **overrides) -> Agent:
        data = {
            "id": agent_id,
            "name": "Ava",
            "user_id": USER_ID,
            "instructions": INSTRUCTIONS,
        }
        data.update(overrides)
        agent = Agent(**data)
        self.agents[agent.id] = agent
        return agent

    def add_meeting(
        self,
        meeting_id: str = MEETING_ID,
        status: MeetingStatus = MeetingStatus.UPCOMING,
        agent_id: str = AGENT_ID,
    ) -> Meeting:
        meeting = Meeting(
            id=meeting_id,
            name="Mock interview",
            user_id=USER_ID,
            agent_id=agent_id,
            status=status,
        )
        self.meetings[meeting.id] = meeting
        return meeting

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        self.meeting_lookups += 1
        # Yield so concurrent callers really interleave
        await asyncio.sleep(0)
        return self.meetings.get(meeting_id)

    async def get_agent(self, agent_id: str) -> Agent | None:
        self.agent_lookups += 1
        await asyncio.sleep(0)
        return self.agents.get(agent_id)

    async def activate_meeting(self, meeting_id: str) -> Meeting | None:
        meeting = self.meetings.get(meeting_id)
        if meeting is None or meeting.status in NON_ACTIVATABLE_STATUSES:
            return None
        return self._update(
            meeting,
            status=MeetingStatus.ACTIVE,
            started_at=datetime.now(timezone.utc),
        )

    async def mark_meeting_processing(self, meeting_id: str) -> Meeting | None:
        meeting = self.meetings.get(meeting_id)
        if meeting is None or meeting.status != MeetingStatus.ACTIVE:
            return None
        return self._update(
            meeting,
            status=MeetingStatus.PROCESSING,
            ended_at=datetime.now(timezone.utc),
        )

    async def set_transcript_url(self, meeting_id: str, transcript_url: str) -> Meeting | None:
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            return None
        return self._update(meeting, transcript_url=transcript_url)

    async def set_recording_url(self, meeting_id: str, recording_url: str) -> Meeting | None:
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            return None
        return self._update(meeting, recording_url=recording_url)

    def _update(self, meeting: Meeting, **values) -> Meeting:
        updated = meeting.model_copy(
            update={**values, "updated_at": datetime.now(timezone.utc)}
        )
        self.meetings[meeting.id] = updated
        return updated


# ── Integration Fakes ───────────────────────────────────────────────────────


class ScriptedLLM:
    """LLM double returning a fixed reply.

    Set ``gate`` to an asyncio.Event to hold every call until it is set.
    """

    def __init__(self, reply: str = "Tell me about a recent project.") -> None:
        self.reply = reply
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.prompts: list[str] = []

    async def generate(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingSynthesizer:
    def __init__(self, audio: bytes = b"RIFFfakewav") -> None:
        self.audio = audio
        self.error: Exception | None = None
        self.texts: list[str] = []

    async def synthesize_full(self, text: str) -> bytes:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.audio


class RecordingAssetStore:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.uploads: list[tuple[bytes, str]] = []

    async def upload_audio(self, audio: bytes, call_id: str) -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append((audio, call_id))
        return f"https://assets.example.com/{call_id}/{len(self.uploads)}.wav"


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    repo = InMemoryMeetingRepository()
    repo.add_agent()
    repo.add_meeting()
    return repo


@pytest.fixture
def store() -> VoiceSessionStore:
    return VoiceSessionStore()


@pytest.fixture
def stream_client() -> MagicMock:
    client = MagicMock()
    client.upsert_users = AsyncMock(return_value={})
    client.fetch_artifact = AsyncMock(return_value="")
    client.verify_webhook = MagicMock(return_value=True)
    return client


@pytest.fixture
def notifier() -> MagicMock:
    mock = MagicMock()
    mock.meeting_processing = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def synthesizer() -> RecordingSynthesizer:
    return RecordingSynthesizer()


@pytest.fixture
def asset_store() -> RecordingAssetStore:
    return RecordingAssetStore()


@pytest.fixture
def lifecycle(store, repository, stream_client) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        store=store,
        repository=repository,
        stream_client=stream_client,
        retry_delay_s=0,
    )


@pytest.fixture
def turn_processor(store, llm, synthesizer, asset_store) -> TurnProcessor:
    return TurnProcessor(
        store=store,
        llm_service=llm,
        synthesizer=synthesizer,
        asset_store=asset_store,
        llm_timeout_s=1.0,
        tts_timeout_s=1.0,
        publish_timeout_s=1.0,
    )


@pytest.fixture
def event_router(
    repository, store, lifecycle, turn_processor, stream_client, notifier
) -> WebhookEventRouter:
    return WebhookEventRouter(
        repository=repository,
        store=store,
        lifecycle=lifecycle,
        turns=turn_processor,
        stream_client=stream_client,
        notifier=notifier,
    )
