"""Recording phase enumeration."""

from __future__ import annotations

from enum import Enum


class RecordingPhase(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    STOPPING = "STOPPING"
