"""SessionLifecycleManager -- creates, reuses and terminates voice sessions.

Bridges webhook events to the VoiceSessionStore:
- ensure(): lazy, idempotent creation for caption/start events that can
  arrive before (or without) call.session_started
- start_explicit(): eager creation from call.session_started, which already
  carries verified identifiers
- terminate(): removal on call.session_ended

Both creation paths run under the store's per-call lock, so a lazy ensure()
never overwrites a session started explicitly for the same call.

Provisioning the agent's participant identity with Stream is best-effort:
a failure is logged and the session still starts.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from src.voice_agent.core.monitoring import active_voice_sessions
from src.voice_agent.services.stream_client import generated_avatar_uri
from src.voice_agent.voice.session import VoiceSession

if TYPE_CHECKING:
    from src.voice_agent.meetings.repository import MeetingRepository
    from src.voice_agent.meetings.schemas import Agent
    from src.voice_agent.services.stream_client import StreamClient
    from src.voice_agent.voice.session import VoiceSessionStore

logger = structlog.get_logger(__name__)

# Fixed backoff between identity provisioning attempts
PROVISION_RETRY_DELAY_SECONDS = 0.5


class SessionLifecycleManager:
    """Owns creation and teardown of sessions in a VoiceSessionStore.

    Args:
        store: Session registry shared with the turn processor.
        repository: MeetingRepository for meeting/agent lookups.
        stream_client: StreamClient for participant identity upserts.
        retry_delay_s: Backoff between provisioning attempts.
    """

    def __init__(
        self,
        store: VoiceSessionStore,
        repository: MeetingRepository | Any,
        stream_client: StreamClient | Any,
        retry_delay_s: float = PROVISION_RETRY_DELAY_SECONDS,
    ) -> None:
        self._store = store
        self._repository = repository
        self._stream = stream_client
        self._retry_delay_s = retry_delay_s

    async def ensure(self, meeting_id: str) -> bool:
        """Make sure a session exists for the meeting, creating it lazily.

        Returns True immediately (no lookups) when a session already exists.
        Returns False only when the meeting or its agent cannot be resolved,
        or the lookup itself failed. Never replaces a session that appears
        while the lookups are running.
        """
        if self._store.exists(meeting_id):
            return True

        async with self._store.serialized(meeting_id):
            # Another event may have created it while we waited for the lock
            if self._store.exists(meeting_id):
                return True
            try:
                meeting = await self._repository.get_meeting(meeting_id)
                if meeting is None:
                    logger.warning("session.ensure_meeting_not_found", meeting_id=meeting_id)
                    return False

                agent = await self._repository.get_agent(meeting.agent_id)
                if agent is None:
                    logger.warning(
                        "session.ensure_agent_not_found",
                        meeting_id=meeting_id,
                        agent_id=meeting.agent_id,
                    )
                    return False

                await self.provision_agent(agent)
            except Exception:
                logger.error("session.ensure_failed", meeting_id=meeting_id, exc_info=True)
                return False

            created = not self._store.exists(meeting_id)
            if created:
                self._create(meeting_id, agent.id, agent.instructions)

        logger.info("session.ensured", meeting_id=meeting_id, created=created)
        return True

    async def start_explicit(
        self,
        call_id: str,
        agent_id: str,
        instructions: str,
        call_type: str = "default",
    ) -> VoiceSession:
        """Create a session from a call-started event, replacing any existing one.

        Waits for a lazy ensure() in progress for the same call, so the
        explicit session is always the one left in the store.
        """
        async with self._store.serialized(call_id):
            session = self._create(call_id, agent_id, instructions, call_type)
        logger.info("session.started", meeting_id=call_id, agent_id=agent_id)
        return session

    def terminate(self, meeting_id: str) -> bool:
        """Remove the meeting's session. Safe when absent.

        An in-flight turn keeps its reference to the session; the
        terminating flag tells it to drop its result instead of recording it.

        Returns:
            True if a session was removed.
        """
        session = self._store.get(meeting_id)
        if session is not None:
            session.terminating = True
        removed = self._store.remove(meeting_id)
        active_voice_sessions.set(len(self._store))
        logger.info(
            "session.terminated",
            meeting_id=meeting_id,
            existed=removed is not None,
            turn_in_flight=bool(removed and removed.in_flight),
        )
        return removed is not None

    async def provision_agent(self, agent: Agent, retries: int = 0) -> bool:
        """Upsert the agent as a Stream user so it can appear in the call.

        Best-effort: failures are logged, never raised.

        Args:
            agent: Agent to provision.
            retries: Extra attempts after the first failure, each preceded
                by a fixed delay.

        Returns:
            True if the upsert succeeded.
        """
        user = {
            "id": agent.id,
            "name": agent.name,
            "role": "user",
            "image": generated_avatar_uri(seed=agent.name, variant="botttsNeutral"),
        }
        for attempt in range(retries + 1):
            try:
                await self._stream.upsert_users([user])
                return True
            except Exception:
                logger.warning(
                    "session.provision_agent_failed",
                    agent_id=agent.id,
                    attempt=attempt + 1,
                    will_retry=attempt < retries,
                    exc_info=True,
                )
                if attempt < retries:
                    await asyncio.sleep(self._retry_delay_s)
        return False

    def _create(
        self,
        session_id: str,
        agent_user_id: str,
        instructions: str,
        call_type: str = "default",
    ) -> VoiceSession:
        session = self._store.create(
            session_id,
            VoiceSession(
                session_id=session_id,
                agent_user_id=agent_user_id,
                instructions=instructions,
                call_type=call_type,
            ),
        )
        active_voice_sessions.set(len(self._store))
        return session
