"""
Inbound message decoder.

Turns one raw socket frame (text or binary) into a TranscriptEvent.

Contract:
    decode(raw) -> TranscriptEvent | None
        None means "recognized and deliberately suppressed" (benign remote
        errors). Everything else either decodes or raises a DecodeError:
        - MalformedPayload:   not UTF-8, not JSON, wrong shapes
        - UnknownMessageType: valid envelope, unrecognized discriminant

Both DecodeErrors are non-fatal; the caller logs and skips the frame.

Envelope (JSON object, "type" discriminant):
    interim        transcript, speaker_tag?
    transcription  transcript, is_final, confidence?, speaker_tag?, transcript_id?
    summary        summary: structured object or (fenced) JSON / raw text
    error          message, fatal?
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from constants import (
    BENIGN_REMOTE_ERROR_MARKERS,
    MSG_TYPE_ERROR,
    MSG_TYPE_INTERIM,
    MSG_TYPE_SUMMARY,
    MSG_TYPE_TRANSCRIPTION,
    SUMMARY_KEY_ALIASES,
)
from errors import MalformedPayload, UnknownMessageType
from protocol.messages import (
    ClinicalSummary,
    Final,
    Interim,
    RemoteError,
    Summary,
    TranscriptEvent,
    TranscriptIdHint,
)


_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)
_KEY_SEPARATORS_RE = re.compile(r"[\s_\-]+")
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+")


# =============================================================================
# Field coercion helpers
# =============================================================================

def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _transcript_text(payload: Mapping[str, Any]) -> str | None:
    text = payload.get("transcript")
    if text is None:
        return None
    if not isinstance(text, str):
        raise MalformedPayload(f"transcript must be a string, got {type(text).__name__}")
    return text


def is_benign_error(message: str) -> bool:
    """True for remote errors that should be suppressed rather than surfaced."""
    lowered = message.lower()
    return any(marker in lowered for marker in BENIGN_REMOTE_ERROR_MARKERS)


# =============================================================================
# Envelope
# =============================================================================

def _load_envelope(raw: str | bytes | bytearray) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayload(f"binary frame is not UTF-8: {exc}") from exc

    if not isinstance(raw, str):
        raise MalformedPayload(f"unsupported frame type {type(raw).__name__}")

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedPayload(f"invalid JSON: {exc.msg}") from exc

    if not isinstance(payload, dict):
        raise MalformedPayload(f"envelope must be an object, got {type(payload).__name__}")
    return payload


def decode(raw: str | bytes | bytearray) -> TranscriptEvent | None:
    """Decode one inbound frame. See module docstring for the contract."""
    payload = _load_envelope(raw)
    transcript_id = _optional_int(payload.get("transcript_id"))

    msg_type = payload.get("type")
    if msg_type is None:
        if transcript_id is not None:
            return TranscriptIdHint(transcript_id)
        raise MalformedPayload("missing 'type' discriminant")
    if not isinstance(msg_type, str):
        raise MalformedPayload("'type' must be a string")

    msg_type = msg_type.strip().lower()

    if msg_type in (MSG_TYPE_INTERIM, MSG_TYPE_TRANSCRIPTION):
        text = _transcript_text(payload)
        if text is None:
            if transcript_id is not None:
                return TranscriptIdHint(transcript_id)
            raise MalformedPayload(f"'{msg_type}' message without transcript")

        speaker_tag = _optional_int(payload.get("speaker_tag"))
        if msg_type == MSG_TYPE_TRANSCRIPTION and payload.get("is_final") is True:
            return Final(
                text=text,
                confidence=_optional_float(payload.get("confidence")),
                speaker_tag=speaker_tag,
                transcript_id=transcript_id,
            )
        return Interim(text=text, speaker_tag=speaker_tag, transcript_id=transcript_id)

    if msg_type == MSG_TYPE_SUMMARY:
        if "summary" not in payload or payload["summary"] is None:
            raise MalformedPayload("summary message without 'summary'")
        return Summary(parse_summary(payload["summary"]))

    if msg_type == MSG_TYPE_ERROR:
        message = payload.get("message")
        if not isinstance(message, str) or not message:
            message = "Unknown server error"
        if is_benign_error(message):
            return None
        return RemoteError(message=message, fatal=payload.get("fatal") is True)

    raise UnknownMessageType(f"unknown message type: {msg_type!r}")


# =============================================================================
# Summary unwrapping
# =============================================================================

def strip_code_fence(text: str) -> str:
    """Return the body of the first ``` fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match is None:
        return text.strip()
    return match.group(1).strip()


def normalize_section_key(key: str) -> str | None:
    """Map 'Next Steps' / 'next_steps' / 'nextSteps' / 'EXAM' to a canonical key."""
    return SUMMARY_KEY_ALIASES.get(_KEY_SEPARATORS_RE.sub("", key).lower())


def _section_items(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        lines = (_BULLET_RE.sub("", line.strip()) for line in value.splitlines())
        return tuple(line for line in lines if line)
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if item is not None and str(item).strip())
    return (str(value),)


def _identifiers(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v is not None) or None
    if isinstance(value, Mapping):
        return ", ".join(f"{k}: {v}" for k, v in value.items()) or None
    text = str(value).strip()
    return text or None


def _from_mapping(mapping: Mapping[str, Any]) -> ClinicalSummary | None:
    sections: dict[str, Any] = {}
    for key, value in mapping.items():
        canonical = normalize_section_key(str(key))
        if canonical is not None and canonical not in sections:
            sections[canonical] = value

    if not sections:
        return None

    return ClinicalSummary(
        history=_section_items(sections.get("history")),
        examination=_section_items(sections.get("examination")),
        diagnosis=_section_items(sections.get("diagnosis")),
        treatment=_section_items(sections.get("treatment")),
        next_steps=_section_items(sections.get("next_steps")),
        identifiers=_identifiers(sections.get("identifiers")),
    )


def parse_summary(value: Any, *, _depth: int = 0) -> ClinicalSummary:
    """
    Normalize a summary payload.

    Accepts a structured object, a JSON string, a fenced JSON string, or a
    JSON-encoded string of any of those. Anything that cannot be mapped to
    sections is preserved as raw text.
    """
    if isinstance(value, ClinicalSummary):
        return value
    if value is None:
        raise MalformedPayload("summary payload is empty")

    if isinstance(value, Mapping):
        parsed = _from_mapping(value)
        if parsed is not None:
            return parsed
        # Envelope-wrapped: {"summary": ...}
        inner = value.get("summary")
        if inner is not None and _depth < 3:
            return parse_summary(inner, _depth=_depth + 1)
        return ClinicalSummary(raw_text=json.dumps(value, ensure_ascii=False))

    if isinstance(value, str):
        body = strip_code_fence(value)
        if not body:
            return ClinicalSummary(raw_text=value)
        try:
            decoded = json.loads(body)
        except json.JSONDecodeError:
            return ClinicalSummary(raw_text=body)
        if isinstance(decoded, (Mapping, str)) and _depth < 3:
            return parse_summary(decoded, _depth=_depth + 1)
        return ClinicalSummary(raw_text=body)

    return ClinicalSummary(raw_text=json.dumps(value, ensure_ascii=False, default=str))
