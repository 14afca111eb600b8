# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from errors import MalformedPayload, UnknownMessageType
from protocol.decoder import decode, normalize_section_key, parse_summary, strip_code_fence
from protocol.messages import Final, Interim, RemoteError, Summary, TranscriptIdHint


def frame(**payload) -> str:
    return json.dumps(payload)


# ---------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------

def test_interim():
    msg = decode(frame(type="interim", transcript="[SPEAKER_1]: Hello", speaker_tag=1))
    assert msg == Interim(text="[SPEAKER_1]: Hello", speaker_tag=1)


def test_transcription_not_final_is_interim():
    msg = decode(frame(type="transcription", transcript="Hel", is_final=False, transcript_id=42))
    assert msg == Interim(text="Hel", transcript_id=42)


def test_final_with_transcript_id():
    msg = decode(frame(
        type="transcription",
        transcript="Hello there",
        is_final=True,
        confidence=0.93,
        transcript_id="42",
    ))
    assert msg == Final(text="Hello there", confidence=0.93, transcript_id=42)


def test_binary_frame_is_decoded_as_utf8():
    msg = decode(frame(type="interim", transcript="hi").encode("utf-8"))
    assert isinstance(msg, Interim)


def test_id_only_message_is_hint():
    assert decode(frame(transcript_id=7)) == TranscriptIdHint(7)
    assert decode(frame(type="transcription", transcript_id=7)) == TranscriptIdHint(7)


def test_remote_error_fatal_flag():
    assert decode(frame(type="error", message="quota exceeded")) == RemoteError("quota exceeded")
    assert decode(frame(type="error", message="boom", fatal=True)) == RemoteError("boom", fatal=True)


def test_benign_error_is_suppressed():
    assert decode(frame(type="error", message="Could not set detected_language")) is None


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    b"\xff\xfe\x00",
    json.dumps({"type": "interim"}),
    json.dumps({"type": "interim", "transcript": 12}),
    json.dumps({"type": "summary"}),
])
def test_malformed(raw):
    with pytest.raises(MalformedPayload):
        decode(raw)


def test_unknown_type():
    with pytest.raises(UnknownMessageType):
        decode(frame(type="heartbeat"))


# ---------------------------------------------------------------------
# Summary unwrapping
# ---------------------------------------------------------------------

def test_structured_summary_with_key_variants():
    msg = decode(frame(type="summary", summary={
        "History": ["Cough for 3 days"],
        "Exam": "- Chest clear\n- No fever",
        "diagnosis": ["URTI"],
        "Treatment": [],
        "Next Steps": ["Review in 1 week"],
        "identifiers": "Patient: J. Doe",
    }))

    assert isinstance(msg, Summary)
    summary = msg.summary
    assert summary.is_structured
    assert summary.history == ("Cough for 3 days",)
    assert summary.examination == ("Chest clear", "No fever")
    assert summary.next_steps == ("Review in 1 week",)
    assert summary.identifiers == "Patient: J. Doe"


def test_fenced_json_string_summary():
    body = '```json\n{"history": ["a"], "next_steps": ["b"]}\n```'
    summary = parse_summary(body)
    assert summary.history == ("a",)
    assert summary.next_steps == ("b",)


def test_json_encoded_string_summary():
    summary = parse_summary(json.dumps(json.dumps({"diagnosis": ["Flu"]})))
    assert summary.diagnosis == ("Flu",)


def test_wrapped_summary_envelope():
    summary = parse_summary({"summary": {"treatment": ["Rest"]}})
    assert summary.treatment == ("Rest",)


def test_unparseable_summary_is_kept_as_raw_text():
    summary = parse_summary("Patient doing well, nothing further.")
    assert not summary.is_structured
    assert summary.raw_text == "Patient doing well, nothing further."
    assert summary.to_dict() == {"raw_text": "Patient doing well, nothing further."}


def test_helpers():
    assert strip_code_fence("```\nabc\n```") == "abc"
    assert strip_code_fence("  plain ") == "plain"
    assert normalize_section_key("Next-Steps") == "next_steps"
    assert normalize_section_key("nextSteps") == "next_steps"
    assert normalize_section_key("vitals") is None
