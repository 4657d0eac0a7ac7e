"""Meeting repository -- async reads and guarded updates for meetings and agents.

Provides MeetingRepository with the session_factory callable pattern.
Status transitions are conditional UPDATEs: the WHERE clause carries the
expected current status, so two racing webhook deliveries cannot both
apply the same transition (optimistic concurrency without locks).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.voice_agent.meetings.models import AgentModel, MeetingModel
from src.voice_agent.meetings.schemas import (
    NON_ACTIVATABLE_STATUSES,
    Agent,
    Meeting,
    MeetingStatus,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        name=model.name,
        user_id=model.user_id,
        agent_id=model.agent_id,
        status=MeetingStatus(model.status),
        started_at=model.started_at,
        ended_at=model.ended_at,
        transcript_url=model.transcript_url,
        recording_url=model.recording_url,
        summary=model.summary,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_agent(model: AgentModel) -> Agent:
    """Convert AgentModel to Agent schema."""
    return Agent(
        id=model.id,
        name=model.name,
        user_id=model.user_id,
        instructions=model.instructions,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async access to meetings and agents.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        """Get a meeting by ID, or None if it does not exist."""
        async for session in self._session_factory():
            result = await session.execute(
                select(MeetingModel).where(MeetingModel.id == meeting_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_agent(self, agent_id: str) -> Agent | None:
        """Get an agent by ID, or None if it does not exist."""
        async for session in self._session_factory():
            result = await session.execute(
                select(AgentModel).where(AgentModel.id == agent_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_agent(model)

    # ── Guarded Transitions ──────────────────────────────────────────────

    async def activate_meeting(self, meeting_id: str) -> Meeting | None:
        """Transition a meeting to ACTIVE and stamp started_at.

        Applied only when the current status is outside
        NON_ACTIVATABLE_STATUSES, so a duplicate start event cannot
        re-activate a running or finished meeting.

        Returns:
            Updated Meeting, or None if the meeting is absent or ineligible.
        """
        blocked = [s.value for s in NON_ACTIVATABLE_STATUSES]
        return await self._conditional_update(
            MeetingModel.id == meeting_id,
            MeetingModel.status.not_in(blocked),
            values={
                "status": MeetingStatus.ACTIVE.value,
                "started_at": datetime.now(timezone.utc),
            },
        )

    async def mark_meeting_processing(self, meeting_id: str) -> Meeting | None:
        """Transition ACTIVE -> PROCESSING and stamp ended_at.

        Returns:
            Updated Meeting, or None if the meeting was not ACTIVE.
        """
        return await self._conditional_update(
            MeetingModel.id == meeting_id,
            MeetingModel.status == MeetingStatus.ACTIVE.value,
            values={
                "status": MeetingStatus.PROCESSING.value,
                "ended_at": datetime.now(timezone.utc),
            },
        )

    # ── Artifact URLs ────────────────────────────────────────────────────

    async def set_transcript_url(
        self, meeting_id: str, transcript_url: str
    ) -> Meeting | None:
        """Record the transcript artifact location. None if meeting absent."""
        return await self._conditional_update(
            MeetingModel.id == meeting_id,
            values={"transcript_url": transcript_url},
        )

    async def set_recording_url(
        self, meeting_id: str, recording_url: str
    ) -> Meeting | None:
        """Record the recording artifact location. None if meeting absent."""
        return await self._conditional_update(
            MeetingModel.id == meeting_id,
            values={"recording_url": recording_url},
        )

    async def _conditional_update(
        self, *criteria: Any, values: dict[str, Any]
    ) -> Meeting | None:
        """UPDATE ... WHERE criteria RETURNING the row, in one statement."""
        stmt = (
            update(MeetingModel)
            .where(*criteria)
            .values(**values, updated_at=datetime.now(timezone.utc))
            .returning(MeetingModel)
        )
        async for session in self._session_factory():
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                return None
            return _model_to_meeting(model)
