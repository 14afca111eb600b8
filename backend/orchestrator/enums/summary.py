"""Summary lifecycle enumeration."""

from __future__ import annotations

from enum import Enum


class SummaryPhase(str, Enum):
    """
    IDLE:      no summary requested
    AWAITING:  EndSession sent, waiting for the terminal summary message
    RECEIVED:  summary stored in state
    FAILED:    channel closed or remote error before a summary arrived
    """

    IDLE = "IDLE"
    AWAITING = "AWAITING"
    RECEIVED = "RECEIVED"
    FAILED = "FAILED"
