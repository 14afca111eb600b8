"""
Connection phase as seen by the session state machine.

This is the reducer's view of the channel, driven by transport events.
The transport's own socket status lives in session.connection_status.
"""

from __future__ import annotations

from enum import Enum


class ConnectionPhase(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
