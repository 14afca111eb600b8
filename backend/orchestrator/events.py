"""
Unified event definitions for the session reducer.

Rules:
- Events describe facts that have occurred (or consumer requests).
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from errors import ErrorInfo
from protocol.messages import TranscriptEvent


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Consumer control
    # ------------------------------------------------------------------
    START_REQUESTED = "START_REQUESTED"
    STOP_REQUESTED = "STOP_REQUESTED"
    CLEAR_REQUESTED = "CLEAR_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    TRANSPORT_CONNECT_FAILED = "TRANSPORT_CONNECT_FAILED"
    TRANSPORT_CLOSED = "TRANSPORT_CLOSED"
    TRANSPORT_ERRORED = "TRANSPORT_ERRORED"
    RECONNECT_SCHEDULED = "RECONNECT_SCHEDULED"
    RECONNECT_EXHAUSTED = "RECONNECT_EXHAUSTED"

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    CAPTURE_STARTED = "CAPTURE_STARTED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    CAPTURE_STOPPED = "CAPTURE_STOPPED"

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Consumer Control Events
# =============================================================================

@dataclass(frozen=True)
class StartRequested(Event):
    """Consumer asked to start recording."""


@dataclass(frozen=True)
class StopRequested(Event):
    """Consumer asked to stop recording."""


@dataclass(frozen=True)
class ClearRequested(Event):
    """Consumer asked to wipe transcript and summary data."""


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """Consumer is tearing the session down (close / shutdown)."""


# =============================================================================
# Transport Events
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(Event):
    """Socket open confirmed (initial connect or reconnect)."""


@dataclass(frozen=True)
class TransportConnectFailed(Event):
    """Initial connect failed (timeout or refused)."""
    error: ErrorInfo


@dataclass(frozen=True)
class TransportClosed(Event):
    """
    Socket closed.

    intentional is True when the close was requested locally.
    """
    code: int
    reason: str = ""
    intentional: bool = False


@dataclass(frozen=True)
class TransportErrored(Event):
    """Non-fatal transport error (e.g. audio send failure)."""
    error: ErrorInfo


@dataclass(frozen=True)
class ReconnectScheduled(Event):
    """Transport will retry after delay_ms."""
    attempt: int
    delay_ms: int


@dataclass(frozen=True)
class ReconnectExhaustedEvent(Event):
    """All reconnect attempts failed; the channel is gone for good."""
    error: ErrorInfo


# =============================================================================
# Capture Events
# =============================================================================

@dataclass(frozen=True)
class CaptureStarted(Event):
    """Microphone acquired; frames are flowing."""


@dataclass(frozen=True)
class CaptureFailed(Event):
    """Microphone could not be acquired."""
    error: ErrorInfo


@dataclass(frozen=True)
class CaptureStopped(Event):
    """Microphone released; no further frames will be delivered."""
    frames_emitted: int = 0


# =============================================================================
# Inbound Message Events
# =============================================================================

@dataclass(frozen=True)
class MessageReceived(Event):
    """A decoded inbound message."""
    message: TranscriptEvent
