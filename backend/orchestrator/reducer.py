"""
Pure session reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).

Lifecycle:
    Idle -> Connecting -> Connected -> Recording -> Stopping
         -> AwaitingSummary -> Idle
    Errored is reachable from any phase on fatal failure.
    Clear wipes transcript / summary data from any phase.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from errors import ErrorInfo, ErrorKind
from orchestrator.commands import (
    CloseTransport,
    Command,
    LogEvent,
    OpenTransport,
    SendEndSession,
    StartCapture,
    StopCapture,
)
from orchestrator.enums.connection import ConnectionPhase
from orchestrator.enums.recording import RecordingPhase
from orchestrator.enums.state import SessionPhase
from orchestrator.enums.summary import SummaryPhase
from orchestrator.events import (
    CaptureFailed,
    CaptureStarted,
    CaptureStopped,
    ClearRequested,
    DisconnectRequested,
    Event,
    MessageReceived,
    ReconnectExhaustedEvent,
    ReconnectScheduled,
    StartRequested,
    StopRequested,
    TransportClosed,
    TransportConnectFailed,
    TransportErrored,
    TransportOpened,
)
from orchestrator.retry import RetryAttempt, reset_attempt
from orchestrator.state_dataclass import SessionState
from protocol.messages import (
    Final,
    Interim,
    RemoteError,
    Summary,
    TranscriptIdHint,
)
from constants import CLOSE_CODE_NORMAL
from transcript.consolidation import consolidate_text
from transcript.reconciliation import (
    TranscriptSegment,
    apply_final,
    apply_interim,
    clear_live_line,
    cleared,
)


SUMMARY_ERROR_CONNECTION_CLOSED = "Connection closed before summary was received"
SUMMARY_ERROR_DISCONNECTED = "Session closed before summary was received"


# =============================================================================
# Derived phase
# =============================================================================

def session_phase(state: SessionState) -> SessionPhase:
    """Collapse the orthogonal sub-phases into the consumer-visible phase."""
    if state.errored:
        return SessionPhase.ERRORED
    if state.recording_phase is RecordingPhase.STOPPING:
        return SessionPhase.STOPPING
    if state.summary_phase is SummaryPhase.AWAITING:
        return SessionPhase.AWAITING_SUMMARY
    if state.recording_phase is RecordingPhase.RECORDING:
        return SessionPhase.RECORDING
    if state.connection_phase is ConnectionPhase.CONNECTING:
        return SessionPhase.CONNECTING
    if state.connection_phase is ConnectionPhase.CONNECTED:
        return SessionPhase.CONNECTED
    return SessionPhase.IDLE


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: SessionState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "phase": session_phase(state).value,
            "connection": state.connection_phase.value,
            "recording": state.recording_phase.value,
            "summary": state.summary_phase.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "transcript_id": state.transcript_id,
            "segments": len(state.transcript.segments),
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: SessionState, event: Event, reason: str
) -> tuple[SessionState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _transition(
    state: SessionState,
    new_state: SessionState,
    event: Event,
    decision: str,
    commands: tuple[Command, ...] = (),
    details: dict[str, Any] | None = None,
) -> tuple[SessionState, tuple[Command, ...]]:
    """Attach the decision log (and a state_changed log when the phase moved)."""
    out: tuple[Command, ...] = commands + (_log(new_state, event, decision, details),)

    old_phase = session_phase(state)
    new_phase = session_phase(new_state)
    if old_phase is not new_phase:
        out += (
            _log(
                new_state,
                event,
                "state_changed",
                {
                    "from_state": old_phase.value,
                    "to_state": new_phase.value,
                    "source": decision,
                },
            ),
        )
    return new_state, _logs_last(out)


def _capture_active(state: SessionState) -> bool:
    return state.start_pending or state.recording_phase is not RecordingPhase.IDLE


def _fail_awaiting_summary(state: SessionState, reason: str) -> SessionState:
    if state.summary_phase is not SummaryPhase.AWAITING:
        return state
    return replace(state, summary_phase=SummaryPhase.FAILED, summary_error=reason)


def _adopt_transcript_id(
    state: SessionState, event: Event, transcript_id: int | None
) -> tuple[SessionState, tuple[Command, ...]]:
    """Set the correlation id once; conflicting ids are logged and ignored."""
    if transcript_id is None or transcript_id == state.transcript_id:
        return state, ()
    if state.transcript_id is None:
        new_state = replace(state, transcript_id=transcript_id)
        return new_state, (
            _log(new_state, event, "transcript_id_set", {"transcript_id": transcript_id}),
        )
    return state, (
        _log(
            state,
            event,
            "transcript_id_conflict",
            {"kept": state.transcript_id, "received": transcript_id},
        ),
    )


# =============================================================================
# Consumer control
# =============================================================================

def _on_start_requested(state: SessionState, event: Event):
    if state.start_pending:
        return _ignore(state, event, "start_pending")
    if state.recording_phase is RecordingPhase.RECORDING:
        return _ignore(state, event, "already_recording")
    if state.recording_phase is RecordingPhase.STOPPING:
        return _ignore(state, event, "stopping")
    if state.summary_phase is SummaryPhase.AWAITING:
        return _ignore(state, event, "awaiting_summary")
    if state.connection_phase is ConnectionPhase.CONNECTING:
        return _ignore(state, event, "connecting")

    new_state = replace(
        state,
        start_pending=True,
        errored=False,
        last_error=None,
        summary=None,
        summary_error=None,
        summary_phase=SummaryPhase.IDLE,
    )

    if state.connection_phase is ConnectionPhase.DISCONNECTED:
        new_state = replace(
            new_state,
            connection_phase=ConnectionPhase.CONNECTING,
            reconnect_attempt=reset_attempt(),
        )
        return _transition(
            state, new_state, event, "start_connect_then_capture",
            (OpenTransport(), StartCapture()),
        )

    return _transition(state, new_state, event, "start_capture", (StartCapture(),))


def _on_stop_requested(state: SessionState, event: Event):
    if state.recording_phase is not RecordingPhase.RECORDING:
        return _ignore(state, event, "not_recording")

    new_state = replace(state, recording_phase=RecordingPhase.STOPPING)
    return _transition(state, new_state, event, "stop_capture", (StopCapture(),))


def _on_clear_requested(state: SessionState, event: Event):
    new_state = replace(
        state,
        transcript=cleared(),
        transcript_id=None,
        summary=None,
        summary_error=None,
        summary_phase=SummaryPhase.IDLE,
        last_error=None,
        errored=False,
    )
    return _transition(
        state, new_state, event, "cleared",
        details={"segments_dropped": len(state.transcript.segments)},
    )


def _on_disconnect_requested(state: SessionState, event: Event):
    commands: tuple[Command, ...] = ()
    if _capture_active(state):
        commands += (StopCapture(),)
    commands += (CloseTransport(reason="disconnect_requested"),)

    new_state = replace(
        _fail_awaiting_summary(state, SUMMARY_ERROR_DISCONNECTED),
        connection_phase=ConnectionPhase.DISCONNECTED,
        recording_phase=RecordingPhase.IDLE,
        start_pending=False,
        transcript=clear_live_line(state.transcript),
    )
    return _transition(state, new_state, event, "disconnect", commands)


# =============================================================================
# Transport
# =============================================================================

def _on_transport_opened(state: SessionState, event: Event):
    if state.connection_phase is not ConnectionPhase.CONNECTING:
        return _ignore(state, event, "stale_open")

    new_state = replace(
        state,
        connection_phase=ConnectionPhase.CONNECTED,
        reconnect_attempt=reset_attempt(),
    )
    return _transition(
        state, new_state, event, "transport_opened",
        details={"after_attempts": state.reconnect_attempt.attempt},
    )


def _on_transport_connect_failed(state: SessionState, event: TransportConnectFailed):
    new_state = replace(
        state,
        connection_phase=ConnectionPhase.DISCONNECTED,
        start_pending=False,
        last_error=event.error,
    )
    return _transition(
        state, new_state, event, "connect_failed",
        details={"kind": event.error.kind.value, "message": event.error.message},
    )


def _on_transport_closed(state: SessionState, event: TransportClosed):
    will_reconnect = not event.intentional and event.code != CLOSE_CODE_NORMAL
    details = {
        "code": event.code,
        "reason": event.reason,
        "intentional": event.intentional,
        "will_reconnect": will_reconnect,
    }

    new_state = replace(
        _fail_awaiting_summary(state, SUMMARY_ERROR_CONNECTION_CLOSED),
        connection_phase=ConnectionPhase.DISCONNECTED,
    )

    commands: tuple[Command, ...] = ()
    if not will_reconnect and new_state.recording_phase is RecordingPhase.RECORDING:
        # Channel is gone for good; nothing would carry the audio
        commands = (StopCapture(),)
        new_state = replace(
            new_state,
            recording_phase=RecordingPhase.IDLE,
            transcript=clear_live_line(new_state.transcript),
        )

    return _transition(state, new_state, event, "transport_closed", commands, details)


def _on_transport_errored(state: SessionState, event: TransportErrored):
    return state, (
        _log(
            state,
            event,
            "transport_error_transient",
            {"kind": event.error.kind.value, "message": event.error.message},
        ),
    )


def _on_reconnect_scheduled(state: SessionState, event: ReconnectScheduled):
    new_state = replace(
        state,
        connection_phase=ConnectionPhase.CONNECTING,
        reconnect_attempt=RetryAttempt(attempt=event.attempt),
    )
    return _transition(
        state, new_state, event, "reconnect_scheduled",
        details={"attempt": event.attempt, "delay_ms": event.delay_ms},
    )


def _on_reconnect_exhausted(state: SessionState, event: ReconnectExhaustedEvent):
    commands: tuple[Command, ...] = (StopCapture(),) if _capture_active(state) else ()

    new_state = replace(
        _fail_awaiting_summary(state, SUMMARY_ERROR_CONNECTION_CLOSED),
        connection_phase=ConnectionPhase.DISCONNECTED,
        recording_phase=RecordingPhase.IDLE,
        start_pending=False,
        errored=True,
        last_error=event.error,
        transcript=clear_live_line(state.transcript),
    )
    return _transition(
        state, new_state, event, "enter_error", commands,
        {"reason": event.error.kind.value, "segments_retained": len(state.transcript.segments)},
    )


# =============================================================================
# Capture
# =============================================================================

def _on_capture_started(state: SessionState, event: Event):
    if not state.start_pending:
        # Start was superseded (disconnect / fatal error) while acquiring
        return state, (
            StopCapture(),
            _log(state, event, "ignore", {"reason": "no_start_pending"}),
        )

    new_state = replace(
        state,
        start_pending=False,
        recording_phase=RecordingPhase.RECORDING,
        summary=None,
        summary_error=None,
        summary_phase=SummaryPhase.IDLE,
        last_error=None,
    )
    return _transition(state, new_state, event, "recording_started")


def _on_capture_failed(state: SessionState, event: CaptureFailed):
    new_state = replace(state, start_pending=False, last_error=event.error)
    return _transition(
        state, new_state, event, "capture_failed",
        details={"kind": event.error.kind.value, "message": event.error.message},
    )


def _on_capture_stopped(state: SessionState, event: CaptureStopped):
    if state.recording_phase is not RecordingPhase.STOPPING:
        return state, (
            _log(state, event, "capture_released", {"frames_emitted": event.frames_emitted}),
        )

    new_state = replace(
        state,
        recording_phase=RecordingPhase.IDLE,
        transcript=clear_live_line(state.transcript),
    )

    if state.connection_phase is ConnectionPhase.CONNECTED:
        new_state = replace(
            new_state,
            summary_phase=SummaryPhase.AWAITING,
            summary_error=None,
        )
        return _transition(
            state, new_state, event, "end_session_sent", (SendEndSession(),),
            {"frames_emitted": event.frames_emitted},
        )

    return _transition(
        state, new_state, event, "stopped_without_channel",
        details={"frames_emitted": event.frames_emitted},
    )


# =============================================================================
# Inbound messages
# =============================================================================

def _on_interim(state: SessionState, event: Event, msg: Interim):
    new_state, id_logs = _adopt_transcript_id(state, event, msg.transcript_id)
    new_state = replace(
        new_state,
        transcript=apply_interim(new_state.transcript, msg.text, msg.speaker_tag),
    )
    return new_state, _logs_last(id_logs)


def _on_final(state: SessionState, event: Event, msg: Final):
    if msg.text == "":
        return _ignore(state, event, "empty_final")
    # Whitespace-only finals still append (as a blank segment)
    text = consolidate_text(msg.text) or msg.text.strip()

    new_state, id_logs = _adopt_transcript_id(state, event, msg.transcript_id)

    segment = TranscriptSegment(
        id=f"seg-{state.next_segment_seq}",
        text=text,
        confidence=msg.confidence,
        speaker_tag=msg.speaker_tag,
        timestamp_ms=event.ts_ms,
        transcript_id=msg.transcript_id if msg.transcript_id is not None else new_state.transcript_id,
    )

    view = apply_final(new_state.transcript, segment)
    if new_state.recording_phase is not RecordingPhase.RECORDING:
        # Live line is kept visible only while recording
        view = clear_live_line(view)

    new_state = replace(
        new_state,
        transcript=view,
        next_segment_seq=state.next_segment_seq + 1,
    )
    return new_state, _logs_last(id_logs + (
        _log(new_state, event, "segment_appended", {"segment_id": segment.id}),
    ))


def _on_summary(state: SessionState, event: Event, msg: Summary):
    awaiting = state.summary_phase is SummaryPhase.AWAITING
    new_state = replace(
        state,
        summary=msg.summary,
        summary_error=None,
        summary_phase=SummaryPhase.RECEIVED,
    )

    if not awaiting:
        return _transition(
            state, new_state, event, "summary_stored",
            details={"structured": msg.summary.is_structured},
        )

    new_state = replace(new_state, connection_phase=ConnectionPhase.DISCONNECTED)
    return _transition(
        state, new_state, event, "summary_received",
        (CloseTransport(reason="summary_received"),),
        {"structured": msg.summary.is_structured},
    )


def _on_remote_error(state: SessionState, event: Event, msg: RemoteError):
    error = ErrorInfo(kind=ErrorKind.REMOTE_ERROR, message=msg.message, fatal=msg.fatal)
    new_state = replace(
        _fail_awaiting_summary(state, msg.message),
        last_error=error,
    )

    if not msg.fatal:
        return _transition(
            state, new_state, event, "remote_error", details={"message": msg.message}
        )

    commands: tuple[Command, ...] = (StopCapture(),) if _capture_active(state) else ()
    commands += (CloseTransport(reason="remote_fatal_error"),)
    new_state = replace(
        new_state,
        errored=True,
        connection_phase=ConnectionPhase.DISCONNECTED,
        recording_phase=RecordingPhase.IDLE,
        start_pending=False,
        transcript=clear_live_line(new_state.transcript),
    )
    return _transition(
        state, new_state, event, "enter_error", commands,
        {"reason": "remote_fatal_error", "message": msg.message},
    )


def _on_message(state: SessionState, event: MessageReceived):
    msg = event.message
    if isinstance(msg, Interim):
        return _on_interim(state, event, msg)
    if isinstance(msg, Final):
        return _on_final(state, event, msg)
    if isinstance(msg, TranscriptIdHint):
        new_state, logs = _adopt_transcript_id(state, event, msg.transcript_id)
        return new_state, logs
    if isinstance(msg, Summary):
        return _on_summary(state, event, msg)
    if isinstance(msg, RemoteError):
        return _on_remote_error(state, event, msg)
    return _ignore(state, event, f"unhandled_message:{type(msg).__name__}")


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: SessionState,
    event: Event,
) -> tuple[SessionState, tuple[Command, ...]]:
    """
    Apply one event.

    Commands are ordered: side effects first, then logs, then the
    state_changed log (so the transition is logged after its effects).
    """
    # pylint: disable=too-many-return-statements
    if isinstance(event, StartRequested):
        return _on_start_requested(state, event)
    if isinstance(event, StopRequested):
        return _on_stop_requested(state, event)
    if isinstance(event, ClearRequested):
        return _on_clear_requested(state, event)
    if isinstance(event, DisconnectRequested):
        return _on_disconnect_requested(state, event)

    if isinstance(event, TransportOpened):
        return _on_transport_opened(state, event)
    if isinstance(event, TransportConnectFailed):
        return _on_transport_connect_failed(state, event)
    if isinstance(event, TransportClosed):
        return _on_transport_closed(state, event)
    if isinstance(event, TransportErrored):
        return _on_transport_errored(state, event)
    if isinstance(event, ReconnectScheduled):
        return _on_reconnect_scheduled(state, event)
    if isinstance(event, ReconnectExhaustedEvent):
        return _on_reconnect_exhausted(state, event)

    if isinstance(event, CaptureStarted):
        return _on_capture_started(state, event)
    if isinstance(event, CaptureFailed):
        return _on_capture_failed(state, event)
    if isinstance(event, CaptureStopped):
        return _on_capture_stopped(state, event)

    if isinstance(event, MessageReceived):
        return _on_message(state, event)

    return _ignore(state, event, "unknown_event")
