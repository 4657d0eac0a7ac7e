"""In-memory voice session state and the registry that holds it.

A VoiceSession lives for the duration of one provider call. The store is
constructed once at startup and handed to the lifecycle manager, the turn
processor and the API layer; it has no business logic of its own.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal


@dataclass(frozen=True)
class ConversationTurn:
    """One message of the running conversation."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class AudioResponse:
    """An agent reply and where its synthesized audio can be fetched.

    audio_url is empty when speech synthesis or publishing was unavailable.
    """

    text: str
    audio_url: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class VoiceSession:
    """Conversational state for one active call.

    history and audio_responses are append-only. in_flight is the
    single-flight guard; use try_begin_turn()/end_turn() rather than
    touching it directly.
    """

    session_id: str
    agent_user_id: str
    instructions: str
    call_type: str = "default"
    history: list[ConversationTurn] = field(default_factory=list)
    audio_responses: list[AudioResponse] = field(default_factory=list)
    in_flight: bool = False
    terminating: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def call_cid(self) -> str:
        return f"{self.call_type}:{self.session_id}"

    def try_begin_turn(self) -> bool:
        """Atomically claim the session for one turn.

        Check and set happen with no await in between, so on a single event
        loop two concurrent callers can never both observe "not in flight".

        Returns:
            True if the caller now owns the turn, False if one is running.
        """
        if self.in_flight:
            return False
        self.in_flight = True
        return True

    def end_turn(self) -> None:
        self.in_flight = False

    def append_user(self, text: str) -> None:
        self.history.append(ConversationTurn(role="user", content=text))

    def append_assistant(self, text: str) -> None:
        self.history.append(ConversationTurn(role="assistant", content=text))

    def record_response(self, text: str, audio_url: str) -> AudioResponse:
        response = AudioResponse(text=text, audio_url=audio_url)
        self.audio_responses.append(response)
        return response


@dataclass
class _CallLock:
    """Creation lock for one call plus the number of tasks holding or awaiting it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class VoiceSessionStore:
    """Registry of active voice sessions keyed by call id.

    Exact, not a cache: entries leave only through remove(). Session
    creation for the same call (lazy ensure and explicit start) is
    serialized with serialized(); different calls never contend. A call's
    lock exists only while some task holds or awaits it.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, VoiceSession] = {}
        self._locks: dict[str, _CallLock] = {}

    def create(self, session_id: str, session: VoiceSession) -> VoiceSession:
        """Insert a session, replacing any previous entry for the id."""
        self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> VoiceSession | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> VoiceSession | None:
        """Delete a session; no-op if absent. Returns the removed session."""
        return self._sessions.pop(session_id, None)

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    @asynccontextmanager
    async def serialized(self, session_id: str) -> AsyncIterator[None]:
        """Hold the call's creation lock for the duration of the block.

        The lock entry is shared by every concurrent holder and waiter for
        the id and dropped when the last of them leaves, so lookups for
        unknown calls leave nothing behind.
        """
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _CallLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[session_id]

    @property
    def lock_count(self) -> int:
        """Number of calls with a creation lock currently in use."""
        return len(self._locks)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
