"""
Consultation transcription session.

One TranscriptionSession == one consultation:
- Owns the Runtime (authoritative state + command execution)
- Owns the transport and capture pipeline, wired through the runtime context
- Translates transport callbacks into reducer events
- Is the only pathway that starts / stops capture and transport

Public control surface:
    await start_recording()
    stop_recording()
    clear_transcriptions()
    await close()

Everything observable is derived from the current SessionState.
"""

from __future__ import annotations

from typing import Any, Callable
from uuid import uuid4

from audio.capture import CapturePipeline, SoundDeviceSource
from config import AppConfig
from errors import DecodeError, ErrorInfo, ReconnectExhausted, TransportError
from observability.logger import log_event
from orchestrator.enums.connection import ConnectionPhase
from orchestrator.enums.recording import RecordingPhase
from orchestrator.enums.state import SessionPhase
from orchestrator.enums.summary import SummaryPhase
from orchestrator.events import (
    ClearRequested,
    DisconnectRequested,
    EventType,
    MessageReceived,
    ReconnectExhaustedEvent,
    ReconnectScheduled,
    StartRequested,
    StopRequested,
    TransportClosed,
    TransportErrored,
    TransportOpened,
)
from orchestrator.reducer import session_phase
from orchestrator.runtime import Runtime, StateListener
from orchestrator.runtime_context import (
    CaptureProtocol,
    RuntimeExecutionContext,
)
from orchestrator.state_dataclass import SessionState
from protocol.decoder import decode
from protocol.messages import ClinicalSummary
from session.summary_client import SummaryClient
from session.transport import SessionTransport
from transcript.consolidation import full_transcript
from transcript.reconciliation import TranscriptSegment, segment_count, word_count
from transcript.serialization import snapshot_to_dict


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


class TranscriptionSession:
    """Consumer-facing control surface for a single consultation."""

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        transport: SessionTransport | None = None,
        capture: CaptureProtocol | None = None,
        summary_client: SummaryClient | None = None,
        session_id: str | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._config = config or AppConfig()
        self.session_id = session_id or _new_session_id()

        if transport is None:
            headers = None
            if self._config.api_token:
                headers = {"Authorization": f"Bearer {self._config.api_token}"}
            transport = SessionTransport(
                self._config.transcription_ws_url,
                headers=headers,
                session_id=self.session_id,
            )
        if capture is None:
            capture = CapturePipeline(
                SoundDeviceSource(device=self._config.capture_device),
                session_id=self.session_id,
            )

        self.transport = transport
        self.capture = capture
        self.summary_client = summary_client

        # Transport -> events
        transport.on_open = self._on_transport_open
        transport.on_message = self._on_transport_message
        transport.on_close = self._on_transport_close
        transport.on_transport_error = self._on_transport_error
        transport.on_reconnect_scheduled = self._on_reconnect_scheduled

        context = RuntimeExecutionContext(
            transport=transport,
            capture=capture,
            session_id=self.session_id,
        )
        if clock is None:
            self.runtime = Runtime(context=context)
        else:
            self.runtime = Runtime(context=context, clock=clock)

        log_event({
            "event_type": "session_created",
            "session_id": self.session_id,
            "ws_url": self._config.transcription_ws_url,
        })

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start_recording(self) -> None:
        """
        Open the channel if needed, then start microphone capture.

        Raises:
            CaptureError: microphone could not be started (transport stays open)
            TransportError: channel could not be opened
        """
        await self.runtime.handle_event(StartRequested(
            event_type=EventType.START_REQUESTED,
            ts_ms=self.runtime.now_ms(),
        ))

    def stop_recording(self) -> None:
        """Stop capture, then request the summary if the channel is open."""
        self.runtime.dispatch(StopRequested(
            event_type=EventType.STOP_REQUESTED,
            ts_ms=self.runtime.now_ms(),
        ))

    def clear_transcriptions(self) -> None:
        self.runtime.dispatch(ClearRequested(
            event_type=EventType.CLEAR_REQUESTED,
            ts_ms=self.runtime.now_ms(),
        ))

    async def close(self) -> None:
        """Stop everything and close the channel without reconnecting."""
        self.runtime.dispatch(DisconnectRequested(
            event_type=EventType.DISCONNECT_REQUESTED,
            ts_ms=self.runtime.now_ms(),
        ))
        await self.transport.wait_closed()
        log_event({"event_type": "session_closed", "session_id": self.session_id})

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self.runtime.subscribe(listener)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.runtime.state

    @property
    def phase(self) -> SessionPhase:
        return session_phase(self.state)

    @property
    def is_connected(self) -> bool:
        return self.state.connection_phase is ConnectionPhase.CONNECTED

    @property
    def is_recording(self) -> bool:
        return self.state.recording_phase is RecordingPhase.RECORDING

    @property
    def transcriptions(self) -> tuple[TranscriptSegment, ...]:
        return self.state.transcript.segments

    @property
    def current_interim(self) -> str:
        live = self.state.transcript.live_line
        return live.text if live is not None else ""

    @property
    def error(self) -> ErrorInfo | None:
        return self.state.last_error

    @property
    def summary(self) -> ClinicalSummary | None:
        return self.state.summary

    @property
    def is_loading_summary(self) -> bool:
        return self.state.summary_phase is SummaryPhase.AWAITING

    @property
    def summary_error(self) -> str | None:
        return self.state.summary_error

    @property
    def current_transcript_id(self) -> int | None:
        return self.state.transcript_id

    @property
    def segment_count(self) -> int:
        return segment_count(self.state.transcript)

    @property
    def word_count(self) -> int:
        return word_count(self.state.transcript)

    def full_transcript(self, include_speakers: bool = True) -> str:
        return full_transcript(self.state.transcript, include_speakers=include_speakers)

    def snapshot(self) -> dict[str, Any]:
        out = snapshot_to_dict(self.state, transport=self.transport.snapshot())
        out["session_id"] = self.session_id
        return out

    # ------------------------------------------------------------------
    # Out-of-band summary retrieval
    # ------------------------------------------------------------------

    async def fetch_summary(self, *, poll: bool = False) -> ClinicalSummary | None:
        """
        Retrieve the stored summary for the correlated transcript.

        Raises:
            LookupError: no transcript id has been received yet
            RuntimeError: no summary client configured
        """
        transcript_id = self.state.transcript_id
        if transcript_id is None:
            raise LookupError("No transcript id has been received for this session")
        if self.summary_client is None:
            raise RuntimeError("Summary retrieval is not configured")

        if poll:
            return await self.summary_client.poll(transcript_id)
        return await self.summary_client.fetch(transcript_id)

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _on_transport_open(self) -> None:
        self.runtime.dispatch(TransportOpened(
            event_type=EventType.TRANSPORT_OPENED,
            ts_ms=self.runtime.now_ms(),
        ))

    def _on_transport_message(self, raw: str | bytes) -> None:
        try:
            message = decode(raw)
        except DecodeError as exc:
            log_event({
                "level": "WARNING",
                "event_type": "inbound_message_skipped",
                "session_id": self.session_id,
                "kind": exc.kind.value,
                "message": exc.message,
            })
            return

        if message is None:
            log_event({
                "level": "DEBUG",
                "event_type": "remote_error_suppressed",
                "session_id": self.session_id,
            })
            return

        self.runtime.dispatch(MessageReceived(
            event_type=EventType.MESSAGE_RECEIVED,
            ts_ms=self.runtime.now_ms(),
            message=message,
        ))

    def _on_transport_close(self, code: int, reason: str, intentional: bool) -> None:
        self.runtime.dispatch(TransportClosed(
            event_type=EventType.TRANSPORT_CLOSED,
            ts_ms=self.runtime.now_ms(),
            code=code,
            reason=reason,
            intentional=intentional,
        ))

    def _on_transport_error(self, exc: TransportError) -> None:
        if isinstance(exc, ReconnectExhausted):
            self.runtime.dispatch(ReconnectExhaustedEvent(
                event_type=EventType.RECONNECT_EXHAUSTED,
                ts_ms=self.runtime.now_ms(),
                error=exc.info(),
            ))
            return

        self.runtime.dispatch(TransportErrored(
            event_type=EventType.TRANSPORT_ERRORED,
            ts_ms=self.runtime.now_ms(),
            error=exc.info(),
        ))

    def _on_reconnect_scheduled(self, attempt: int, delay_s: float) -> None:
        self.runtime.dispatch(ReconnectScheduled(
            event_type=EventType.RECONNECT_SCHEDULED,
            ts_ms=self.runtime.now_ms(),
            attempt=attempt,
            delay_ms=int(delay_s * 1000),
        ))
