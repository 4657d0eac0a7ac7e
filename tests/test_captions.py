"""Unit tests for caption payload normalization and transcript parsing."""

from __future__ import annotations

import json

from src.voice_agent.voice.captions import (
    DEFAULT_SPEAKER_ID,
    MAX_SCAN_DEPTH,
    extract_caption_text,
    extract_custom_meeting_id,
    extract_meeting_id,
    parse_transcript_lines,
    resolve_speaker_id,
)


# ── extract_caption_text ─────────────────────────────────────────────────────


def test_text_directly_under_closed_caption():
    payload = {"closed_caption": {"text": "Hello there"}}
    assert extract_caption_text(payload) == "Hello there"


def test_caption_and_content_keys_are_accepted():
    assert extract_caption_text({"closed_caption": {"caption": "hi"}}) == "hi"
    assert extract_caption_text({"caption": {"content": "yo"}}) == "yo"


def test_text_nested_under_payload_or_data():
    assert extract_caption_text({"closed_caption": {"payload": {"text": "nested"}}}) == "nested"
    assert extract_caption_text({"closed_caption": {"data": {"caption": "inner"}}}) == "inner"


def test_direct_text_wins_over_nested():
    payload = {"closed_caption": {"text": "outer", "payload": {"text": "inner"}}}
    assert extract_caption_text(payload) == "outer"


def test_fallback_scan_finds_text_anywhere():
    payload = {
        "type": "call.closed_caption",
        "event": {"segments": [{"speaker": "u1"}, {"content": "found it"}]},
    }
    assert extract_caption_text(payload) == "found it"


def test_blank_and_missing_text_yield_none():
    assert extract_caption_text({"closed_caption": {"text": "   "}}) is None
    assert extract_caption_text({"closed_caption": {}}) is None
    assert extract_caption_text({}) is None


def test_deep_structure_without_text_keys_yields_none():
    payload = {"call": {"members": [{"user": {"id": "u1", "role": "host"}}], "custom": {"meetingId": "m1"}}}
    assert extract_caption_text(payload) is None


def test_non_mapping_payload_yields_none():
    assert extract_caption_text(None) is None
    assert extract_caption_text("text") is None
    assert extract_caption_text(["text"]) is None


def test_non_string_text_is_ignored():
    assert extract_caption_text({"closed_caption": {"text": 42}}) is None


def test_cyclic_payload_terminates():
    payload: dict = {"closed_caption": {}}
    payload["closed_caption"]["self"] = payload
    assert extract_caption_text(payload) is None


def test_scan_is_depth_bounded():
    deep: dict = {"text": "too deep"}
    for _ in range(MAX_SCAN_DEPTH + 2):
        deep = {"wrapper": deep}
    assert extract_caption_text(deep) is None


# ── Identifier extraction ────────────────────────────────────────────────────


def test_meeting_id_from_call_cid():
    assert extract_meeting_id({"call_cid": "default:meeting-1"}) == "meeting-1"


def test_meeting_id_falls_back_to_call_cid_field():
    payload = {"call": {"cid": "default:meeting-2"}}
    assert extract_meeting_id(payload) == "meeting-2"


def test_meeting_id_missing_or_malformed():
    assert extract_meeting_id({}) is None
    assert extract_meeting_id({"call_cid": "no-colon"}) is None
    assert extract_meeting_id({"call_cid": "default:"}) is None


def test_custom_meeting_id():
    payload = {"call": {"custom": {"meetingId": "meeting-3"}}}
    assert extract_custom_meeting_id(payload) == "meeting-3"
    assert extract_custom_meeting_id({"call": {"custom": {}}}) is None
    assert extract_custom_meeting_id({"call": "x"}) is None


def test_speaker_id_precedence():
    payload = {
        "user": {"id": "from-user"},
        "closed_caption": {"user_id": "from-caption"},
        "speaker_id": "from-top",
    }
    assert resolve_speaker_id(payload) == "from-user"

    del payload["user"]
    assert resolve_speaker_id(payload) == "from-caption"

    del payload["closed_caption"]
    assert resolve_speaker_id(payload) == "from-top"

    assert resolve_speaker_id({}) == DEFAULT_SPEAKER_ID


# ── parse_transcript_lines ───────────────────────────────────────────────────


def test_transcript_lines_keep_order_and_skip_bad_records():
    raw = "\n".join([
        json.dumps({"type": "speech", "speaker_id": "u1", "text": "First", "start_ts": 0, "stop_ts": 900}),
        "not json",
        "",
        json.dumps(["not", "an", "object"]),
        json.dumps({"speaker_id": "u1", "text": ""}),
        json.dumps({"speaker_id": "u2", "text": "Second"}),
    ])

    lines = parse_transcript_lines(raw)

    assert [(line.speaker_id, line.text) for line in lines] == [
        ("u1", "First"),
        ("u2", "Second"),
    ]
    assert lines[0].stop_ts == 900


def test_empty_transcript():
    assert parse_transcript_lines("") == []
