"""
Side-effect command definitions for the session reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging, replay,
    and runtime dispatch.
    """

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    CLOSE_TRANSPORT = "CLOSE_TRANSPORT"
    SEND_END_SESSION = "SEND_END_SESSION"

    # Capture
    START_CAPTURE = "START_CAPTURE"
    STOP_CAPTURE = "STOP_CAPTURE"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """Request to open the transcription socket (async; awaited by runtime)."""
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class CloseTransport(Command):
    """Request an intentional close (code 1000, no reconnect)."""
    reason: str | None = None
    command_type: CommandType = CommandType.CLOSE_TRANSPORT


@dataclass(frozen=True)
class SendEndSession(Command):
    """Request the remote side to finalize and emit a summary."""
    command_type: CommandType = CommandType.SEND_END_SESSION


# =============================================================================
# Capture Commands
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """Request to acquire the microphone (async; awaited by runtime)."""
    command_type: CommandType = CommandType.START_CAPTURE


@dataclass(frozen=True)
class StopCapture(Command):
    """Request synchronous release of the microphone."""
    command_type: CommandType = CommandType.STOP_CAPTURE


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT


ASYNC_COMMAND_TYPES = frozenset({
    CommandType.OPEN_TRANSPORT,
    CommandType.START_CAPTURE,
})
