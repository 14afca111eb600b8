"""
Reconnect policy helpers.

Purpose:
- Centralize the reconnect schedule for the session transport
- Keep the reducer and the transport free of policy arithmetic

This module contains NO timers, NO async, NO side effects.

Policy:
- Reconnect only after an established connection closed unexpectedly
  (not intentional, close code != 1000)
- At most RECONNECT_MAX_ATTEMPTS attempts
- Attempt n waits n * RECONNECT_BACKOFF_STEP_MS (2s, 4s, 6s)
- The counter resets once a connection opens
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import (
    CLOSE_CODE_NORMAL,
    RECONNECT_BACKOFF_STEP_MS,
    RECONNECT_MAX_ATTEMPTS,
)


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable reconnect attempt counter.

    Semantics:
    - attempt == 0: no reconnect attempted since the last successful open.
    - attempt >= 1: the Nth reconnect attempt has been scheduled.
    """
    attempt: int


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def should_reconnect(
    *,
    code: int,
    intentional: bool,
    attempts_made: int,
    max_attempts: int = RECONNECT_MAX_ATTEMPTS,
) -> bool:
    """
    Returns True if another reconnect attempt is allowed.

    attempts_made = reconnect attempts already performed since last open
    """
    if intentional or code == CLOSE_CODE_NORMAL:
        return False
    return attempts_made < max_attempts


def reconnect_delay_ms(attempt: int) -> int:
    """
    Delay before reconnect attempt N (1-based).

    Linear backoff; attempt values below 1 are treated as 1.
    """
    return max(attempt, 1) * RECONNECT_BACKOFF_STEP_MS


def reconnect_delay_s(attempt: int) -> float:
    return reconnect_delay_ms(attempt) / 1000.0
