"""
Derived session phase enumeration.

Rules:
- This enum names the consumer-visible lifecycle phases ONLY.
- The phase is derived from SessionState (see reducer.session_phase);
  it is never stored.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class SessionPhase(str, Enum):
    """
    High-level lifecycle of one consultation session.

    Idle -> Connecting -> Connected -> Recording -> Stopping
         -> AwaitingSummary -> Idle

    ERRORED is reachable from any phase on fatal transport failure.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECORDING = "RECORDING"
    STOPPING = "STOPPING"
    AWAITING_SUMMARY = "AWAITING_SUMMARY"
    ERRORED = "ERRORED"
