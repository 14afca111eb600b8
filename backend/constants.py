"""
CONSTANTS
---------
Single source of truth for all behavioral numbers in the session client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Wire Format (PCM16 mono @ 16kHz, little-endian)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)

# Capture tick: one frame per audio-processing callback (4096 samples ~ 256ms)
AUDIO_FRAME_SAMPLES: Final[int] = 4096
AUDIO_BYTES_PER_FRAME: Final[int] = AUDIO_FRAME_SAMPLES * AUDIO_SAMPLE_WIDTH_BYTES
AUDIO_FRAME_DURATION_S: Final[float] = AUDIO_FRAME_SAMPLES / AUDIO_SAMPLE_RATE_HZ
AUDIO_BYTES_PER_SECOND: Final[int] = AUDIO_SAMPLE_RATE_HZ * AUDIO_SAMPLE_WIDTH_BYTES

PCM16_MAX: Final[int] = 32_767
PCM16_MIN: Final[int] = -32_768
PCM16_SCALE: Final[float] = 32_768.0

# =============================================================================
# Transport
# =============================================================================

CONNECT_TIMEOUT_S: Final[float] = 10.0

CLOSE_CODE_NORMAL: Final[int] = 1000
CLOSE_CODE_ABNORMAL: Final[int] = 1006
CLOSE_CODE_INTERNAL_ERROR: Final[int] = 1011

# Consecutive receive errors tolerated on an open socket before it is recycled
RECV_ERROR_MAX_CONSECUTIVE: Final[int] = 3

RECONNECT_MAX_ATTEMPTS: Final[int] = 3
RECONNECT_BACKOFF_STEP_MS: Final[int] = 2_000

# Outbound audio backlog bound (seconds of audio). Beyond this, new frames drop.
OUTBOUND_AUDIO_Q_MAX_S: Final[float] = 5.0

WS_MAX_MESSAGE_BYTES: Final[int] = 2**22

# =============================================================================
# Wire Protocol
# =============================================================================

MSG_TYPE_INTERIM: Final[str] = "interim"
MSG_TYPE_TRANSCRIPTION: Final[str] = "transcription"
MSG_TYPE_SUMMARY: Final[str] = "summary"
MSG_TYPE_ERROR: Final[str] = "error"
MSG_TYPE_END_SESSION: Final[str] = "end_session"

# Remote errors matching any of these markers are suppressed (non-fatal, invisible)
BENIGN_REMOTE_ERROR_MARKERS: Final[Tuple[str, ...]] = (
    "detected_language",
)

# =============================================================================
# Clinical Summary
# =============================================================================

# Normalized (lowercase, no separators) spelling -> canonical key
SUMMARY_KEY_ALIASES: Final[dict[str, str]] = {
    "history": "history",
    "examination": "examination",
    "exam": "examination",
    "diagnosis": "diagnosis",
    "treatment": "treatment",
    "nextsteps": "next_steps",
    "identifiers": "identifiers",
}

# Out-of-band retrieval polling
SUMMARY_POLL_ATTEMPTS: Final[int] = 5
SUMMARY_POLL_DELAY_S: Final[float] = 2.0

# =============================================================================
# Transcript
# =============================================================================

SPEAKER_TAG_PATTERN: Final[str] = r"^\[SPEAKER_(\d+)\]:\s*"

# =============================================================================
# Helper Functions
# =============================================================================

def bytes_to_seconds(num_bytes: int) -> float:
    """
    Convert a PCM16 mono byte count to duration in seconds.

    Non-positive input returns 0.0.
    """
    if num_bytes <= 0:
        return 0.0
    return num_bytes / AUDIO_BYTES_PER_SECOND

