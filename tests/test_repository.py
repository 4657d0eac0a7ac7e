"""Tests for MeetingRepository statement construction and row mapping.

A recording session stands in for AsyncSession so the guarded UPDATE
statements can be inspected without a database.
"""

from __future__ import annotations

from unittest.mock import MagicMock

from sqlalchemy.dialects import postgresql

from src.voice_agent.meetings.models import AgentModel, MeetingModel
from src.voice_agent.meetings.repository import MeetingRepository
from src.voice_agent.meetings.schemas import MeetingStatus


class RecordingSession:
    """Minimal AsyncSession stand-in returning one fixed row."""

    def __init__(self, row=None) -> None:
        self.row = row
        self.statements: list = []
        self.commits = 0

    async def execute(self, stmt):
        self.statements.append(stmt)
        result = MagicMock()
        result.scalar_one_or_none.return_value = self.row
        return result

    async def commit(self) -> None:
        self.commits += 1


def _factory(session: RecordingSession):
    async def session_factory():
        yield session

    return session_factory


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def _meeting_row(status: str = "active") -> MeetingModel:
    return MeetingModel(
        id="meeting-1",
        name="Standup",
        user_id="user-1",
        agent_id="agent-1",
        status=status,
    )


async def test_activate_meeting_is_guarded_on_status():
    session = RecordingSession(row=_meeting_row("active"))
    repo = MeetingRepository(session_factory=_factory(session))

    meeting = await repo.activate_meeting("meeting-1")

    assert meeting is not None
    assert meeting.status == MeetingStatus.ACTIVE
    sql = _sql(session.statements[0])
    assert sql.startswith("UPDATE meetings")
    assert "meetings.status NOT IN" in sql
    assert "RETURNING" in sql
    assert session.commits == 1


async def test_activate_meeting_rejected_returns_none():
    session = RecordingSession(row=None)
    repo = MeetingRepository(session_factory=_factory(session))

    assert await repo.activate_meeting("meeting-1") is None


async def test_mark_processing_requires_active_status():
    session = RecordingSession(row=_meeting_row("processing"))
    repo = MeetingRepository(session_factory=_factory(session))

    meeting = await repo.mark_meeting_processing("meeting-1")

    assert meeting.status == MeetingStatus.PROCESSING
    stmt = session.statements[0]
    assert "meetings.status = " in _sql(stmt)
    params = stmt.compile(dialect=postgresql.dialect()).params
    assert MeetingStatus.ACTIVE.value in params.values()
    assert MeetingStatus.PROCESSING.value in params.values()


async def test_set_transcript_url_has_no_status_guard():
    session = RecordingSession(row=_meeting_row())
    repo = MeetingRepository(session_factory=_factory(session))

    await repo.set_transcript_url("meeting-1", "https://t.jsonl")

    assert "status" not in _sql(session.statements[0]).split("WHERE", 1)[1].split("RETURNING")[0]


async def test_get_agent_maps_row():
    row = AgentModel(id="agent-1", name="Ava", user_id="user-1", instructions="Coach")
    repo = MeetingRepository(session_factory=_factory(RecordingSession(row=row)))

    agent = await repo.get_agent("agent-1")

    assert agent.id == "agent-1"
    assert agent.instructions == "Coach"


async def test_get_meeting_missing():
    repo = MeetingRepository(session_factory=_factory(RecordingSession(row=None)))

    assert await repo.get_meeting("nope") is None
