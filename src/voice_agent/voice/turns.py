"""Single-flight conversational turn pipeline: transcript -> LLM -> TTS -> asset.

Provides TurnProcessor, which executes one user-utterance-to-agent-reply
cycle for a voice session:

1. Claim the session (atomic check-and-enter on in_flight)
2. Append the user utterance to history
3. Render the prompt (instructions + full history) and call the LLM
4. Append the reply (fallback apology when the model returns nothing)
5. Synthesize speech, if a synthesizer is configured
6. Publish the audio and obtain a URL, if synthesis produced audio
7. Record {text, audio_url, timestamp} on the session
8. Release in_flight on every exit path

Overlapping utterances for the same call are dropped, not queued. Every
external call runs under a bounded timeout; a timeout counts as an
integration failure.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from src.voice_agent.core.monitoring import voice_turn_duration_seconds, voice_turns_total
from src.voice_agent.voice.session import AudioResponse, ConversationTurn, VoiceSession

if TYPE_CHECKING:
    from src.voice_agent.services.asset_store import CloudinaryAssetStore
    from src.voice_agent.services.llm import LLMService
    from src.voice_agent.services.tts import ElevenLabsTTS
    from src.voice_agent.voice.session import VoiceSessionStore

logger = structlog.get_logger(__name__)

FALLBACK_REPLY = "I apologize, but I could not generate a response."

CONVERSATION_DIRECTIVE = "You are having a conversation. Respond naturally and concisely."

DEFAULT_LLM_TIMEOUT_S = 20.0
DEFAULT_TTS_TIMEOUT_S = 15.0
DEFAULT_PUBLISH_TIMEOUT_S = 20.0


class TurnOutcome(str, Enum):
    """How a process_turn call ended."""

    COMPLETED = "completed"
    SKIPPED_NO_SESSION = "skipped_no_session"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    SKIPPED_SELF = "skipped_self"
    SKIPPED_EMPTY = "skipped_empty"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass
class TurnResult:
    """Outcome of one turn, mainly for logging and tests."""

    outcome: TurnOutcome
    reply: str | None = None
    audio_url: str = ""

    @property
    def executed(self) -> bool:
        """True if the turn got past the single-flight guard."""
        return self.outcome in (
            TurnOutcome.COMPLETED,
            TurnOutcome.DISCARDED,
            TurnOutcome.FAILED,
        )


def render_prompt(
    instructions: str,
    history: list[ConversationTurn],
    max_messages: int = 0,
) -> str:
    """Render instructions and history as one completion prompt.

    Args:
        instructions: Agent instructions for the session.
        history: Ordered conversation turns.
        max_messages: When > 0, only the most recent messages are rendered.
            The stored history itself is never trimmed.
    """
    window = history[-max_messages:] if max_messages > 0 else history
    parts = [
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
        for turn in window
    ]
    conversation = "\n\n".join(parts)
    return (
        f"{instructions}\n\n{CONVERSATION_DIRECTIVE}\n\n"
        f"Conversation:\n{conversation}\n\nAssistant:"
    )


class TurnProcessor:
    """Executes conversational turns against sessions in a VoiceSessionStore.

    Args:
        store: Registry holding the active sessions.
        llm_service: Reply generator with ``async generate(prompt) -> str``.
        synthesizer: Optional ElevenLabsTTS; None means text-only replies.
        asset_store: Optional asset store; None means synthesized audio
            cannot be published and replies are recorded without a URL.
        llm_timeout_s: Bound on the LLM call.
        tts_timeout_s: Bound on the synthesis call.
        publish_timeout_s: Bound on the asset upload.
        max_prompt_messages: History window for the prompt (0 = all).
    """

    def __init__(
        self,
        store: VoiceSessionStore,
        llm_service: LLMService | Any,
        synthesizer: ElevenLabsTTS | Any | None = None,
        asset_store: CloudinaryAssetStore | Any | None = None,
        llm_timeout_s: float = DEFAULT_LLM_TIMEOUT_S,
        tts_timeout_s: float = DEFAULT_TTS_TIMEOUT_S,
        publish_timeout_s: float = DEFAULT_PUBLISH_TIMEOUT_S,
        max_prompt_messages: int = 0,
    ) -> None:
        self._store = store
        self._llm = llm_service
        self._synthesizer = synthesizer
        self._asset_store = asset_store
        self._llm_timeout_s = llm_timeout_s
        self._tts_timeout_s = tts_timeout_s
        self._publish_timeout_s = publish_timeout_s
        self._max_prompt_messages = max_prompt_messages

    async def process_turn(
        self, meeting_id: str, text: str, speaker_id: str
    ) -> TurnResult:
        """Run one turn for a meeting's session.

        Silently does nothing when the session is absent, already running a
        turn, the speaker is the agent itself, or the text is blank. Never
        raises for integration failures; in_flight is always released.

        Args:
            meeting_id: Session (call) identifier.
            text: Spoken text from the participant.
            speaker_id: Participant who said it.
        """
        session = self._store.get(meeting_id)
        if session is None:
            return self._skip(TurnOutcome.SKIPPED_NO_SESSION, meeting_id)
        if speaker_id == session.agent_user_id:
            return self._skip(TurnOutcome.SKIPPED_SELF, meeting_id)
        if not text or not text.strip():
            return self._skip(TurnOutcome.SKIPPED_EMPTY, meeting_id)
        if not session.try_begin_turn():
            return self._skip(TurnOutcome.SKIPPED_IN_FLIGHT, meeting_id)

        started = time.perf_counter()
        result = TurnResult(outcome=TurnOutcome.FAILED)
        try:
            result = await self._run(session, text)
        except Exception:
            logger.error(
                "voice.turn_failed",
                meeting_id=meeting_id,
                exc_info=True,
            )
        finally:
            session.end_turn()
            voice_turn_duration_seconds.observe(time.perf_counter() - started)
            voice_turns_total.labels(outcome=result.outcome.value).inc()

        logger.info(
            "voice.turn_finished",
            meeting_id=meeting_id,
            outcome=result.outcome.value,
            transcript_preview=text[:50],
            has_audio=bool(result.audio_url),
        )
        return result

    async def _run(self, session: VoiceSession, text: str) -> TurnResult:
        meeting_id = session.session_id
        session.append_user(text)

        prompt = render_prompt(
            session.instructions, session.history, self._max_prompt_messages
        )
        try:
            reply = await asyncio.wait_for(
                self._llm.generate(prompt), timeout=self._llm_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(
                "voice.llm_timeout",
                meeting_id=meeting_id,
                timeout_s=self._llm_timeout_s,
            )
            return TurnResult(outcome=TurnOutcome.FAILED)
        except Exception:
            logger.warning("voice.llm_error", meeting_id=meeting_id, exc_info=True)
            return TurnResult(outcome=TurnOutcome.FAILED)

        reply = reply if reply and reply.strip() else FALLBACK_REPLY
        session.append_assistant(reply)

        if session.terminating:
            return self._discard(meeting_id, reply)

        audio = await self._synthesize(meeting_id, reply)
        audio_url = ""
        if audio:
            audio_url = await self._publish(meeting_id, audio)

        if session.terminating:
            return self._discard(meeting_id, reply)

        session.record_response(reply, audio_url)
        return TurnResult(
            outcome=TurnOutcome.COMPLETED,
            reply=reply,
            audio_url=audio_url,
        )

    async def _synthesize(self, meeting_id: str, reply: str) -> bytes | None:
        """Reply audio, or None when synthesis is unconfigured or failed."""
        if self._synthesizer is None:
            return None
        try:
            audio = await asyncio.wait_for(
                self._synthesizer.synthesize_full(reply),
                timeout=self._tts_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "voice.tts_timeout",
                meeting_id=meeting_id,
                timeout_s=self._tts_timeout_s,
            )
            return None
        except Exception:
            logger.warning("voice.tts_error", meeting_id=meeting_id, exc_info=True)
            return None

        logger.debug(
            "voice.tts_complete",
            meeting_id=meeting_id,
            audio_bytes=len(audio) if audio else 0,
        )
        return audio or None

    async def _publish(self, meeting_id: str, audio: bytes) -> str:
        """Retrievable URL for the audio, or "" when publishing failed."""
        if self._asset_store is None:
            logger.warning("voice.publish_skipped", meeting_id=meeting_id, reason="no_asset_store")
            return ""
        try:
            return await asyncio.wait_for(
                self._asset_store.upload_audio(audio, meeting_id),
                timeout=self._publish_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "voice.publish_timeout",
                meeting_id=meeting_id,
                timeout_s=self._publish_timeout_s,
            )
        except Exception:
            logger.warning("voice.publish_error", meeting_id=meeting_id, exc_info=True)
        return ""

    def _skip(self, outcome: TurnOutcome, meeting_id: str) -> TurnResult:
        voice_turns_total.labels(outcome=outcome.value).inc()
        logger.debug("voice.turn_skipped", meeting_id=meeting_id, reason=outcome.value)
        return TurnResult(outcome=outcome)

    def _discard(self, meeting_id: str, reply: str) -> TurnResult:
        logger.info("voice.turn_discarded", meeting_id=meeting_id, reason="session_terminated")
        return TurnResult(outcome=TurnOutcome.DISCARDED, reply=reply)

    # ── Read Accessors ───────────────────────────────────────────────────

    def latest_audio_url(self, meeting_id: str) -> str | None:
        """URL of the most recent reply, or None if there is none yet."""
        session = self._store.get(meeting_id)
        if session is None or not session.audio_responses:
            return None
        return session.audio_responses[-1].audio_url

    def audio_responses(self, meeting_id: str) -> list[AudioResponse]:
        session = self._store.get(meeting_id)
        return list(session.audio_responses) if session else []
