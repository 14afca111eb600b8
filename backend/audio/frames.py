"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioFrame:
    """
    Canonical outbound audio frame.

    sequence_num:
        Monotonic capture order (starts at 1 per capture run).
        Used for ordering checks and debugging only; never sent on the wire.

    pcm_bytes:
        Raw PCM16 little-endian mono 16kHz bytes.
        Length MUST equal constants.AUDIO_BYTES_PER_FRAME.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was completed.
        Used for observability only (not control logic).
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int
