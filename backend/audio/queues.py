# backend/audio/queues.py
"""
Bounded outbound audio frame queue with canonical depth measurement.

Requirements:
- Depth measured in seconds of audio (not frame count)
- Explicit drop behavior, counted by reason
- Frames leave in exactly the order they entered (drop, never reorder)
- Deterministic, synchronous behavior
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

from audio.frames import AudioFrame
from constants import bytes_to_seconds


class DropReason(str, Enum):
    """
    Reason an outbound audio frame was dropped.
    """
    OVERFLOW = "overflow"
    NOT_OPEN = "not_open"
    SEND_FAILED = "send_failed"


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0
    not_open: int = 0
    send_failed: int = 0

    def record(self, reason: DropReason) -> None:
        """Increment the counter for reason."""
        if reason is DropReason.OVERFLOW:
            self.overflow += 1
        elif reason is DropReason.NOT_OPEN:
            self.not_open += 1
        else:
            self.send_failed += 1

    def total(self) -> int:
        """Total frames dropped for any reason."""
        return self.overflow + self.not_open + self.send_failed


class AudioFrameQueue:
    """
    Bounded FIFO queue for AudioFrame objects.

    Drop rule: the NEW frame is dropped if enqueueing it would exceed
    max_depth_s. Queued frames are never evicted, so send order always
    matches capture order.
    """

    def __init__(self, *, max_depth_s: float) -> None:
        if max_depth_s <= 0:
            raise ValueError("max_depth_s must be > 0")

        self._max_depth_s: float = max_depth_s
        self._frames: Deque[AudioFrame] = deque()
        self._queued_bytes: int = 0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, frame: AudioFrame) -> bool:
        """
        Enqueue an AudioFrame.

        Returns:
            True if enqueued
            False if dropped (overflow)
        """
        incoming_s = bytes_to_seconds(len(frame.pcm_bytes))
        if self.depth_seconds() + incoming_s > self._max_depth_s:
            self.drops.record(DropReason.OVERFLOW)
            return False

        self._frames.append(frame)
        self._queued_bytes += len(frame.pcm_bytes)
        return True

    def dequeue(self) -> Optional[AudioFrame]:
        """
        Dequeue the oldest AudioFrame.

        Returns None if queue is empty.
        """
        if not self._frames:
            return None
        frame = self._frames.popleft()
        self._queued_bytes -= len(frame.pcm_bytes)
        return frame

    def clear(self) -> int:
        """
        Drop all queued frames without counting them as drops.

        Used when the connection is torn down. Returns the number discarded.
        """
        n = len(self._frames)
        self._frames.clear()
        self._queued_bytes = 0
        return n

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._frames)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._frames

    def depth_seconds(self) -> float:
        """Canonical queue depth in seconds of PCM16 mono audio."""
        return bytes_to_seconds(self._queued_bytes)

    def total_drops(self) -> int:
        """Total frames dropped for any reason."""
        return self.drops.total()

    def snapshot(self) -> dict[str, float | int]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "frames": len(self._frames),
            "depth_s": self.depth_seconds(),
            "dropped_overflow": self.drops.overflow,
            "dropped_not_open": self.drops.not_open,
            "dropped_send_failed": self.drops.send_failed,
            "dropped_total": self.total_drops(),
        }
