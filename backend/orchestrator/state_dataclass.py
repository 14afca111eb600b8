"""
Authoritative session state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
- Exactly one instance per active consultation session, owned by Runtime.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from errors import ErrorInfo
from orchestrator.enums.connection import ConnectionPhase
from orchestrator.enums.recording import RecordingPhase
from orchestrator.enums.summary import SummaryPhase
from orchestrator.retry import RetryAttempt
from protocol.messages import ClinicalSummary
from transcript.reconciliation import TranscriptView


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of all session-owned state."""

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    connection_phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    recording_phase: RecordingPhase = RecordingPhase.IDLE
    summary_phase: SummaryPhase = SummaryPhase.IDLE

    # True between an accepted StartRequested and CaptureStarted/CaptureFailed
    start_pending: bool = False

    # Set on fatal failure; cleared by the next accepted start
    errored: bool = False

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------
    transcript: TranscriptView = field(default_factory=TranscriptView)

    # Set from the first message carrying an id; never overwritten
    transcript_id: int | None = None

    # Monotonic across clear() so segment ids stay unique per session
    next_segment_seq: int = 1

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    summary: ClinicalSummary | None = None
    summary_error: str | None = None

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: ErrorInfo | None = None

    # ------------------------------------------------------------------
    # Reconnect bookkeeping (mirrors the transport for observability)
    # ------------------------------------------------------------------
    reconnect_attempt: RetryAttempt = RetryAttempt(attempt=0)
