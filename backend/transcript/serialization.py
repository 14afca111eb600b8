"""
Session state serialization for the control API.

Responsibilities:
- Convert SessionState into a JSON-safe dict

Non-responsibilities:
- No state decisions
- No logging
"""

from __future__ import annotations

from typing import Any

from errors import ErrorInfo
from orchestrator.enums.connection import ConnectionPhase
from orchestrator.enums.recording import RecordingPhase
from orchestrator.enums.summary import SummaryPhase
from orchestrator.reducer import session_phase
from orchestrator.state_dataclass import SessionState
from transcript.reconciliation import TranscriptSegment, segment_count, word_count


def error_to_dict(error: ErrorInfo | None) -> dict[str, Any] | None:
    if error is None:
        return None
    return {
        "kind": error.kind.value,
        "message": error.message,
        "hint": error.hint,
        "fatal": error.fatal,
    }


def segment_to_dict(segment: TranscriptSegment) -> dict[str, Any]:
    return {
        "id": segment.id,
        "text": segment.text,
        "confidence": segment.confidence,
        "speaker_tag": segment.speaker_tag,
        "timestamp_ms": segment.timestamp_ms,
        "transcript_id": segment.transcript_id,
    }


def snapshot_to_dict(state: SessionState, *, transport: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Observable session state.

    Output format:
    {
        "phase": "RECORDING",
        "is_connected": true,
        "is_recording": true,
        "transcriptions": [...],
        "current_interim": "...",
        ...
    }
    """
    view = state.transcript
    live = view.live_line

    out: dict[str, Any] = {
        "phase": session_phase(state).value,
        "is_connected": state.connection_phase is ConnectionPhase.CONNECTED,
        "is_recording": state.recording_phase is RecordingPhase.RECORDING,
        "is_loading_summary": state.summary_phase is SummaryPhase.AWAITING,
        "summary_phase": state.summary_phase.value,
        "transcriptions": [segment_to_dict(s) for s in view.segments],
        "current_interim": live.text if live is not None else "",
        "current_interim_speaker": live.speaker_tag if live is not None else None,
        "current_transcript_id": state.transcript_id,
        "segment_count": segment_count(view),
        "word_count": word_count(view),
        "summary": state.summary.to_dict() if state.summary is not None else None,
        "summary_error": state.summary_error,
        "error": error_to_dict(state.last_error),
        "reconnect_attempt": state.reconnect_attempt.attempt,
    }
    if transport is not None:
        out["transport"] = transport
    return out
