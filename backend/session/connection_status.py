"""
Socket status tracking for the session transport.

Owned by SessionTransport; separate from and independent of the reducer's
ConnectionPhase. The reducer only learns about the socket through
transport events.
"""
from enum import Enum


class TransportStatus(Enum):
    """
    Socket lifecycle status.

    Frames are accepted for sending only while OPEN.
    """
    CLOSED = "CLOSED"          # No socket (initial, after close, between reconnects)
    CONNECTING = "CONNECTING"  # Handshake in progress (initial or reconnect)
    OPEN = "OPEN"              # Established; audio and control may be sent
    CLOSING = "CLOSING"        # Intentional close in progress
