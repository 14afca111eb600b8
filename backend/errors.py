"""
Session error taxonomy.

Every failure the session client can surface is a SessionError subclass
carrying:
- kind:  stable discriminant (logged, serialized, stored in state)
- fatal: whether the failure ends the operation / session
- hint:  short remediation text for the user

Propagation rules:
- Capture and transport-setup failures raise to the caller of start.
- Mid-session failures are recorded in session state as ErrorInfo and
  are never raised into unrelated call sites.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Stable error discriminants."""

    # Capture
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    DEVICE_BUSY = "device_busy"
    ENVIRONMENT_UNSUPPORTED = "environment_unsupported"

    # Transport
    CONNECT_TIMEOUT = "connect_timeout"
    CONNECT_REFUSED = "connect_refused"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    AUDIO_SEND_FAILURE = "audio_send_failure"
    RECEIVE_FAILURE = "receive_failure"

    # Decoder
    MALFORMED_PAYLOAD = "malformed_payload"
    UNKNOWN_MESSAGE_TYPE = "unknown_message_type"

    # Remote
    REMOTE_ERROR = "remote_error"

    # Summary retrieval
    SUMMARY_FETCH_FAILED = "summary_fetch_failed"
    INVALID_TRANSCRIPT_ID = "invalid_transcript_id"


@dataclass(frozen=True)
class ErrorInfo:
    """Immutable record of the last surfaced error (stored in session state)."""
    kind: ErrorKind
    message: str
    hint: str | None = None
    fatal: bool = False


class SessionError(Exception):
    """Base class for all session client errors."""

    kind: ErrorKind = ErrorKind.REMOTE_ERROR
    fatal: bool = True
    hint: str | None = None

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())
        self.message = str(self)

    @classmethod
    def default_message(cls) -> str:
        return cls.__name__

    def info(self) -> ErrorInfo:
        """Return the immutable state record for this error."""
        return ErrorInfo(
            kind=self.kind,
            message=self.message,
            hint=self.hint,
            fatal=self.fatal,
        )


# =============================================================================
# Capture
# =============================================================================

class CaptureError(SessionError):
    """Microphone capture could not be started."""


class PermissionDenied(CaptureError):
    kind = ErrorKind.PERMISSION_DENIED
    hint = "Microphone permission denied. Please allow microphone access and try again."


class DeviceUnavailable(CaptureError):
    kind = ErrorKind.DEVICE_UNAVAILABLE
    hint = "No microphone found. Please connect a microphone and try again."


class DeviceBusy(CaptureError):
    kind = ErrorKind.DEVICE_BUSY
    hint = (
        "Microphone is being used by another application. "
        "Please close other apps and try again."
    )


class EnvironmentUnsupported(CaptureError):
    kind = ErrorKind.ENVIRONMENT_UNSUPPORTED
    hint = "Microphone access is not available in this environment."


# =============================================================================
# Transport
# =============================================================================

class TransportError(SessionError):
    """Connection-level failure talking to the transcription service."""


class ConnectTimeout(TransportError):
    kind = ErrorKind.CONNECT_TIMEOUT
    hint = "The transcription service did not respond. Check your connection and retry."


class ConnectRefused(TransportError):
    kind = ErrorKind.CONNECT_REFUSED
    hint = "Failed to connect to transcription service. Please retry."


class ReconnectExhausted(TransportError):
    kind = ErrorKind.RECONNECT_EXHAUSTED
    hint = "Connection lost. Please restart the recording session."


class AudioSendFailure(TransportError):
    kind = ErrorKind.AUDIO_SEND_FAILURE
    fatal = False


class ReceiveFailure(TransportError):
    kind = ErrorKind.RECEIVE_FAILURE
    fatal = False


# =============================================================================
# Decoder
# =============================================================================

class DecodeError(SessionError):
    """Inbound frame could not be turned into a TranscriptEvent."""
    fatal = False


class MalformedPayload(DecodeError):
    kind = ErrorKind.MALFORMED_PAYLOAD


class UnknownMessageType(DecodeError):
    kind = ErrorKind.UNKNOWN_MESSAGE_TYPE


# =============================================================================
# Remote
# =============================================================================

class RemoteError(SessionError):
    kind = ErrorKind.REMOTE_ERROR
    fatal = False


# =============================================================================
# Summary retrieval
# =============================================================================

class SummaryFetchError(SessionError):
    kind = ErrorKind.SUMMARY_FETCH_FAILED
    fatal = False

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidTranscriptId(SummaryFetchError):
    kind = ErrorKind.INVALID_TRANSCRIPT_ID
