"""Extraction helpers for heterogeneous Stream Video event payloads.

Caption events do not have one stable shape: depending on the SDK version
and event source the spoken text sits directly under ``closed_caption``,
one level deeper under ``closed_caption.payload``/``data``, or somewhere
else entirely. These helpers never raise; unusable input yields None (or a
placeholder speaker id).
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from src.voice_agent.errors import ParseFailure
from src.voice_agent.meetings.schemas import TranscriptLine

logger = structlog.get_logger(__name__)

TEXT_KEYS: tuple[str, ...] = ("text", "caption", "content")
CAPTION_CONTAINER_KEYS: tuple[str, ...] = ("closed_caption", "caption")
NESTED_PAYLOAD_KEYS: tuple[str, ...] = ("payload", "data")

# Recursion bound for the fallback scan
MAX_SCAN_DEPTH = 8

DEFAULT_SPEAKER_ID = "user"


def _non_blank(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _first_text_field(container: Mapping) -> str | None:
    """First truthy of text/caption/content, accepted only if a non-blank string."""
    for key in TEXT_KEYS:
        value = container.get(key)
        if value:
            return _non_blank(value)
    return None


def _first_mapping(obj: Mapping, keys: tuple[str, ...]) -> Mapping | None:
    for key in keys:
        value = obj.get(key)
        if value:
            return value if isinstance(value, Mapping) else None
    return None


def _scan(obj: Any, depth: int, seen: set[int]) -> str | None:
    """Depth-first search for a text-like string field."""
    if depth > MAX_SCAN_DEPTH or id(obj) in seen:
        return None

    if isinstance(obj, Mapping):
        seen.add(id(obj))
        for key, value in obj.items():
            if key in TEXT_KEYS and _non_blank(value):
                return value
            if isinstance(value, (Mapping, list)):
                found = _scan(value, depth + 1, seen)
                if found:
                    return found
    elif isinstance(obj, list):
        seen.add(id(obj))
        for item in obj:
            if isinstance(item, (Mapping, list)):
                found = _scan(item, depth + 1, seen)
                if found:
                    return found
    return None


def extract_caption_text(payload: Any) -> str | None:
    """Return the spoken text carried by a caption event, or None.

    Known locations are tried first (closed_caption.text/caption/content,
    then closed_caption.payload|data.text/caption/content); failing that,
    the whole payload is scanned up to MAX_SCAN_DEPTH levels deep.
    """
    try:
        if not isinstance(payload, Mapping):
            return None

        container = _first_mapping(payload, CAPTION_CONTAINER_KEYS)
        if container is not None:
            direct = _first_text_field(container)
            if direct:
                return direct
            nested = _first_mapping(container, NESTED_PAYLOAD_KEYS)
            if nested is not None:
                nested_text = _first_text_field(nested)
                if nested_text:
                    return nested_text

        return _scan(payload, 0, set())
    except Exception:
        logger.debug("captions.extract_failed", exc_info=True)
        return None


def _cid_suffix(cid: Any) -> str | None:
    if not isinstance(cid, str) or ":" not in cid:
        return None
    return cid.split(":", 1)[1] or None


def extract_meeting_id(payload: Any) -> str | None:
    """Meeting id from ``call_cid`` ("default:<id>"), else ``call.cid``."""
    if not isinstance(payload, Mapping):
        return None
    meeting_id = _cid_suffix(payload.get("call_cid"))
    if meeting_id:
        return meeting_id
    call = payload.get("call")
    if isinstance(call, Mapping):
        return _cid_suffix(call.get("cid"))
    return None


def extract_custom_meeting_id(payload: Any) -> str | None:
    """Meeting id stored in the call's custom data (``call.custom.meetingId``)."""
    if not isinstance(payload, Mapping):
        return None
    call = payload.get("call")
    if not isinstance(call, Mapping):
        return None
    custom = call.get("custom")
    if not isinstance(custom, Mapping):
        return None
    meeting_id = custom.get("meetingId")
    return meeting_id if isinstance(meeting_id, str) and meeting_id else None


def resolve_speaker_id(payload: Any) -> str:
    """Speaker of a caption: user.id, closed_caption.user_id, speaker_id, or "user"."""
    if not isinstance(payload, Mapping):
        return DEFAULT_SPEAKER_ID
    candidates: list[Any] = []
    user = payload.get("user")
    if isinstance(user, Mapping):
        candidates.append(user.get("id"))
    caption = payload.get("closed_caption")
    if isinstance(caption, Mapping):
        candidates.append(caption.get("user_id"))
    candidates.append(payload.get("speaker_id"))

    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return DEFAULT_SPEAKER_ID


def parse_transcript_lines(raw: str) -> list[TranscriptLine]:
    """Parse a JSONL transcript artifact, skipping malformed records.

    Blank lines are ignored. A line that is not valid JSON, is not an
    object, or lacks a non-empty text/speaker_id is logged and skipped;
    the remaining lines keep their file order.
    """
    lines: list[TranscriptLine] = []
    for number, line in enumerate(raw.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
            if not isinstance(record, dict):
                raise ParseFailure("transcript record is not an object")
            lines.append(TranscriptLine.model_validate(record))
        except (ValueError, ParseFailure, ValidationError) as exc:
            logger.warning(
                "captions.transcript_line_skipped",
                line_number=number,
                error=str(exc),
            )
    return lines
