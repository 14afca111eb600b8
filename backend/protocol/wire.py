# backend/protocol/wire.py
"""
Outbound wire encoding for the transcription socket.

- Audio: one binary message per frame, raw PCM16 little-endian mono 16kHz.
  No header, no sequence number (the service infers order from arrival).
- Control: a single text/JSON message {"type": "end_session"}.

Usage example:

    result = check_sequence_gap(last_seq=prev_seq, current_seq=frame.sequence_num)
    if result.gap:
        log_event({
            "event_type": "audio_seq_gap",
            "expected": result.expected,
            "actual": result.actual,
            "gap_size": result.gap_size,
        })

    await ws.send(encode_audio_frame(frame))
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from audio.frames import AudioFrame
from constants import AUDIO_SAMPLE_WIDTH_BYTES, MSG_TYPE_END_SESSION


# -------------------------
# Exceptions
# -------------------------

class WireEncodingError(ValueError):
    """Raised when an outbound payload violates the wire format."""


class InvalidFrameLength(WireEncodingError):
    """
    Raised when a PCM payload is empty or not a whole number of samples.

    Such a frame would desynchronize the sample stream on the remote side;
    it must be dropped.
    """


# -------------------------
# Audio
# -------------------------

def encode_audio_frame(frame: AudioFrame) -> bytes:
    """Return the binary payload for one audio frame."""
    n = len(frame.pcm_bytes)
    if n == 0 or n % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise InvalidFrameLength(
            f"PCM length {n} is not a positive multiple of {AUDIO_SAMPLE_WIDTH_BYTES}"
        )
    return bytes(frame.pcm_bytes)


# -------------------------
# Control
# -------------------------

END_SESSION_MESSAGE: str = json.dumps({"type": MSG_TYPE_END_SESSION})


def encode_end_session() -> str:
    """Return the text payload requesting session finalization."""
    return END_SESSION_MESSAGE


# -------------------------
# Sequence gap detection
# -------------------------

@dataclass(frozen=True)
class SeqCheckResult:
    """
    Result of a sequence continuity check.
    """
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """Number of frames skipped (0 if no gap or if the sequence restarted)."""
        if not self.gap or self.actual < self.expected:
            return 0
        return self.actual - self.expected


def check_sequence_gap(
    *,
    last_seq: Optional[int],
    current_seq: int,
) -> SeqCheckResult:
    """
    Check whether `current_seq` directly follows `last_seq`.

    Pure function; never raises.
    """
    if last_seq is None or current_seq == last_seq + 1:
        return SeqCheckResult(gap=False, expected=current_seq, actual=current_seq)

    return SeqCheckResult(gap=True, expected=last_seq + 1, actual=current_seq)
