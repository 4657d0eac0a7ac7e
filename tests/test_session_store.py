"""Unit tests for VoiceSession state and the VoiceSessionStore registry."""

from __future__ import annotations

import asyncio

import pytest

from src.voice_agent.voice.session import ConversationTurn, VoiceSession, VoiceSessionStore


def _make_session(session_id: str = "call-1") -> VoiceSession:
    return VoiceSession(
        session_id=session_id,
        agent_user_id="agent-1",
        instructions="Be helpful.",
    )


def test_single_flight_claim_and_release():
    session = _make_session()

    assert session.try_begin_turn() is True
    assert session.in_flight is True
    assert session.try_begin_turn() is False

    session.end_turn()
    assert session.in_flight is False
    assert session.try_begin_turn() is True


def test_history_and_responses_append_in_order():
    session = _make_session()
    session.append_user("Hi")
    session.append_assistant("Hello!")
    session.record_response("Hello!", "https://cdn.example.com/a.wav")

    assert session.history == [
        ConversationTurn(role="user", content="Hi"),
        ConversationTurn(role="assistant", content="Hello!"),
    ]
    assert session.audio_responses[0].audio_url == "https://cdn.example.com/a.wav"
    assert session.audio_responses[0].timestamp.tzinfo is not None


def test_call_cid_combines_type_and_id():
    session = VoiceSession(
        session_id="abc",
        agent_user_id="agent-1",
        instructions="",
        call_type="livestream",
    )
    assert session.call_cid == "livestream:abc"


def test_create_replaces_existing_entry():
    store = VoiceSessionStore()
    first = store.create("call-1", _make_session())
    first.append_user("old")

    second = store.create("call-1", _make_session())

    assert store.get("call-1") is second
    assert second.history == []
    assert len(store) == 1


def test_remove_is_noop_when_absent():
    store = VoiceSessionStore()
    assert store.remove("missing") is None
    assert len(store) == 0


def test_remove_returns_session_and_forgets_it():
    store = VoiceSessionStore()
    session = store.create("call-1", _make_session())

    assert store.remove("call-1") is session
    assert store.get("call-1") is None
    assert not store.exists("call-1")
    assert "call-1" not in store


async def test_serialized_orders_holders_of_the_same_call():
    store = VoiceSessionStore()
    order: list[str] = []
    release = asyncio.Event()

    async def hold(name: str, wait: bool) -> None:
        async with store.serialized("call-1"):
            order.append(f"{name}-in")
            if wait:
                await release.wait()
            order.append(f"{name}-out")

    first = asyncio.create_task(hold("first", wait=True))
    await asyncio.sleep(0)
    second = asyncio.create_task(hold("second", wait=False))
    await asyncio.sleep(0)
    assert order == ["first-in"]
    assert store.lock_count == 1

    release.set()
    await asyncio.gather(first, second)

    assert order == ["first-in", "first-out", "second-in", "second-out"]
    assert store.lock_count == 0


async def test_serialized_does_not_block_other_calls():
    store = VoiceSessionStore()

    async with store.serialized("call-a"):
        async with store.serialized("call-b"):
            assert store.lock_count == 2

    assert store.lock_count == 0


async def test_serialized_releases_lock_when_block_raises():
    store = VoiceSessionStore()

    with pytest.raises(RuntimeError):
        async with store.serialized("call-1"):
            raise RuntimeError("lookup failed")

    assert store.lock_count == 0


def test_session_ids():
    store = VoiceSessionStore()
    store.create("a", _make_session("a"))
    store.create("b", _make_session("b"))
    assert sorted(store.session_ids()) == ["a", "b"]
