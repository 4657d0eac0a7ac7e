"""WebhookEventRouter -- Stream Video event state machine.

Classifies verified webhook events, applies guarded meeting status
transitions, and drives the voice session lifecycle and turn pipeline.

Event handling:
- call.session_started -> guarded transition to ACTIVE, provision the agent
  identity (one retry), start the voice session eagerly
- call.session_participant_left -> no-op; the session lives until the call ends
- call.session_ended -> terminate the session, then guarded ACTIVE -> PROCESSING
- call.transcription_ready -> record transcript URL, replay transcript lines
  through the turn pipeline if a session exists, notify downstream processing
- call.recording_ready -> record recording URL
- call.closed_caption -> lazy ensure, normalize caption, process a turn
- call.closed_captions_started / call.transcription_started -> lazy ensure
- anything else -> acknowledged without action

Only missing identifiers on the explicitly checked paths and unknown
meetings/agents on session_started/transcription_ready produce 4xx results.
Integration failures are logged and the event is still acknowledged, so the
provider does not redeliver an event whose side effects already happened.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from src.voice_agent.errors import LookupFailure, ValidationFailure
from src.voice_agent.voice.captions import (
    extract_caption_text,
    extract_custom_meeting_id,
    extract_meeting_id,
    parse_transcript_lines,
    resolve_speaker_id,
)

if TYPE_CHECKING:
    from src.voice_agent.meetings.repository import MeetingRepository
    from src.voice_agent.services.notifier import InngestNotifier
    from src.voice_agent.services.stream_client import StreamClient
    from src.voice_agent.voice.lifecycle import SessionLifecycleManager
    from src.voice_agent.voice.session import VoiceSessionStore
    from src.voice_agent.voice.turns import TurnProcessor

logger = structlog.get_logger(__name__)

# Event type discriminators
SESSION_STARTED = "call.session_started"
SESSION_PARTICIPANT_LEFT = "call.session_participant_left"
SESSION_ENDED = "call.session_ended"
TRANSCRIPTION_READY = "call.transcription_ready"
RECORDING_READY = "call.recording_ready"
CLOSED_CAPTION = "call.closed_caption"
CLOSED_CAPTIONS_STARTED = "call.closed_captions_started"
TRANSCRIPTION_STARTED = "call.transcription_started"

HANDLED_EVENT_TYPES = frozenset({
    SESSION_STARTED,
    SESSION_PARTICIPANT_LEFT,
    SESSION_ENDED,
    TRANSCRIPTION_READY,
    RECORDING_READY,
    CLOSED_CAPTION,
    CLOSED_CAPTIONS_STARTED,
    TRANSCRIPTION_STARTED,
})


@dataclass
class WebhookResult:
    """HTTP status and JSON body to acknowledge an event with."""

    status_code: int = 200
    body: dict[str, Any] = field(default_factory=lambda: {"status": "ok"})

    @classmethod
    def ok(cls) -> WebhookResult:
        return cls()

    @classmethod
    def ignored(cls) -> WebhookResult:
        return cls(body={"status": "ignored"})

    @classmethod
    def error(cls, status_code: int, message: str) -> WebhookResult:
        return cls(status_code=status_code, body={"error": message})


def _mapping(payload: dict, key: str) -> dict:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


class WebhookEventRouter:
    """Dispatches verified webhook events to the voice session machinery.

    Args:
        repository: MeetingRepository for meeting/agent reads and updates.
        store: VoiceSessionStore of active sessions.
        lifecycle: SessionLifecycleManager for ensure/start/terminate.
        turns: TurnProcessor for running turns.
        stream_client: StreamClient for transcript artifact downloads.
        notifier: InngestNotifier for downstream processing events.
    """

    def __init__(
        self,
        repository: MeetingRepository | Any,
        store: VoiceSessionStore,
        lifecycle: SessionLifecycleManager,
        turns: TurnProcessor,
        stream_client: StreamClient | Any,
        notifier: InngestNotifier | Any,
    ) -> None:
        self._repository = repository
        self._store = store
        self._lifecycle = lifecycle
        self._turns = turns
        self._stream = stream_client
        self._notifier = notifier
        self._handlers: dict[str, Callable[[dict], Awaitable[WebhookResult]]] = {
            SESSION_STARTED: self._on_session_started,
            SESSION_PARTICIPANT_LEFT: self._on_participant_left,
            SESSION_ENDED: self._on_session_ended,
            TRANSCRIPTION_READY: self._on_transcription_ready,
            RECORDING_READY: self._on_recording_ready,
            CLOSED_CAPTION: self._on_closed_caption,
            CLOSED_CAPTIONS_STARTED: self._on_capture_started,
            TRANSCRIPTION_STARTED: self._on_capture_started,
        }

    async def dispatch(self, event_type: str, payload: dict) -> WebhookResult:
        """Route one event. Unknown types are acknowledged without action.

        Missing identifiers map to 400 and unknown meetings/agents to 404;
        everything else a handler decides is returned as-is.
        """
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("webhook.unhandled_event", event_type=event_type)
            return WebhookResult.ok()
        try:
            return await handler(payload)
        except ValidationFailure as exc:
            logger.warning("webhook.invalid_event", event_type=event_type, error=str(exc))
            return WebhookResult.error(400, str(exc))
        except LookupFailure as exc:
            logger.warning("webhook.lookup_failed", event_type=event_type, error=str(exc))
            return WebhookResult.error(404, str(exc))

    # ── Call lifecycle ───────────────────────────────────────────────────

    async def _on_session_started(self, payload: dict) -> WebhookResult:
        meeting_id = extract_custom_meeting_id(payload)
        if not meeting_id:
            raise ValidationFailure("Missing meetingId")

        meeting = await self._repository.activate_meeting(meeting_id)
        if meeting is None:
            # Absent, or already active/processing/completed/cancelled
            logger.info("webhook.session_started_rejected", meeting_id=meeting_id)
            raise LookupFailure("Meeting not found")

        agent = await self._repository.get_agent(meeting.agent_id)
        if agent is None:
            logger.warning(
                "webhook.session_started_agent_missing",
                meeting_id=meeting_id,
                agent_id=meeting.agent_id,
            )
            raise LookupFailure("Agent not found")

        call_type = _mapping(payload, "call").get("type") or "default"
        try:
            await self._lifecycle.provision_agent(agent, retries=1)
            await self._lifecycle.start_explicit(
                meeting_id, agent.id, agent.instructions, call_type=call_type
            )
            logger.info(
                "webhook.agent_ready",
                meeting_id=meeting_id,
                agent_id=agent.id,
            )
        except Exception:
            logger.error("webhook.session_start_failed", meeting_id=meeting_id, exc_info=True)

        return WebhookResult.ok()

    async def _on_participant_left(self, payload: dict) -> WebhookResult:
        meeting_id = extract_meeting_id(payload)
        if not meeting_id:
            raise ValidationFailure("Missing meetingId")

        logger.info(
            "webhook.participant_left",
            meeting_id=meeting_id,
            session_kept=self._store.exists(meeting_id),
        )
        return WebhookResult.ok()

    async def _on_session_ended(self, payload: dict) -> WebhookResult:
        meeting_id = extract_custom_meeting_id(payload)
        if not meeting_id:
            raise ValidationFailure("Missing meetingId")

        # Session teardown must not depend on the status transition succeeding
        self._lifecycle.terminate(meeting_id)

        meeting = await self._repository.mark_meeting_processing(meeting_id)
        logger.info(
            "webhook.session_ended",
            meeting_id=meeting_id,
            transitioned=meeting is not None,
        )
        return WebhookResult.ok()

    # ── Artifacts ────────────────────────────────────────────────────────

    async def _on_transcription_ready(self, payload: dict) -> WebhookResult:
        meeting_id = extract_meeting_id(payload)
        if not meeting_id:
            raise ValidationFailure("Missing meetingId")
        transcript_url = _mapping(payload, "call_transcription").get("url")
        if not transcript_url:
            raise ValidationFailure("Missing transcription url")

        meeting = await self._repository.set_transcript_url(meeting_id, transcript_url)
        if meeting is None:
            raise LookupFailure("Meeting not found")

        has_session = self._store.exists(meeting_id)
        logger.info(
            "webhook.transcription_ready",
            meeting_id=meeting_id,
            has_session=has_session,
        )
        if has_session:
            await self._replay_transcript(meeting_id, transcript_url)

        try:
            await self._notifier.meeting_processing(meeting.id, meeting.transcript_url)
        except Exception:
            logger.warning("webhook.notify_failed", meeting_id=meeting_id, exc_info=True)

        return WebhookResult.ok()

    async def _replay_transcript(self, meeting_id: str, transcript_url: str) -> int:
        """Feed every well-formed transcript line to the turn pipeline in order.

        Returns:
            Number of lines handed to the turn processor.
        """
        try:
            raw = await self._stream.fetch_artifact(transcript_url)
        except Exception:
            logger.warning("webhook.transcript_fetch_failed", meeting_id=meeting_id, exc_info=True)
            return 0

        lines = parse_transcript_lines(raw)
        logger.info("webhook.transcript_parsed", meeting_id=meeting_id, lines=len(lines))

        processed = 0
        for line in lines:
            try:
                await self._turns.process_turn(meeting_id, line.text, line.speaker_id)
                processed += 1
            except Exception:
                logger.warning("webhook.transcript_line_failed", meeting_id=meeting_id, exc_info=True)
        return processed

    async def _on_recording_ready(self, payload: dict) -> WebhookResult:
        meeting_id = extract_meeting_id(payload)
        recording_url = _mapping(payload, "call_recording").get("url")
        if not meeting_id or not recording_url:
            logger.warning("webhook.recording_ready_incomplete", meeting_id=meeting_id)
            return WebhookResult.ignored()

        meeting = await self._repository.set_recording_url(meeting_id, recording_url)
        logger.info(
            "webhook.recording_ready",
            meeting_id=meeting_id,
            recorded=meeting is not None,
        )
        return WebhookResult.ok()

    # ── Live captions ────────────────────────────────────────────────────

    async def _on_closed_caption(self, payload: dict) -> WebhookResult:
        meeting_id = extract_meeting_id(payload)
        if not meeting_id:
            logger.warning("webhook.closed_caption_missing_meeting_id")
            return WebhookResult.ignored()

        if not await self._lifecycle.ensure(meeting_id):
            logger.warning("webhook.closed_caption_no_session", meeting_id=meeting_id)
            return WebhookResult.ignored()

        text = extract_caption_text(payload)
        if not text:
            logger.info(
                "webhook.closed_caption_empty",
                meeting_id=meeting_id,
                payload_keys=sorted(payload),
            )
            return WebhookResult.ignored()

        speaker_id = resolve_speaker_id(payload)
        try:
            await self._turns.process_turn(meeting_id, text, speaker_id)
        except Exception:
            logger.error("webhook.closed_caption_failed", meeting_id=meeting_id, exc_info=True)
        return WebhookResult.ok()

    async def _on_capture_started(self, payload: dict) -> WebhookResult:
        meeting_id = extract_meeting_id(payload)
        if not meeting_id:
            return WebhookResult.ignored()

        ready = await self._lifecycle.ensure(meeting_id)
        logger.info("webhook.session_primed", meeting_id=meeting_id, ready=ready)
        return WebhookResult.ok()
