"""
Metrics and timing helpers.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Durations use monotonic time; event timestamps (ts_ms) use wall-clock time.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


def emit_metric(
    name: str,
    value_ms: int,
    *,
    session_id: str | None = None,
    outcome: str = "ok",
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a single METRIC_TIMER event."""
    log_event({
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": value_ms,
        "outcome": outcome,
        "session_id": session_id,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block are NOT suppressed; they are recorded
      as outcome="error:<ExceptionName>"

    Usage:
        with timed("transport_connect_latency", session_id=sid):
            await transport.connect()
    """
    start_ns = time.monotonic_ns()
    outcome = "ok"
    try:
        yield
    except BaseException as exc:
        outcome = f"error:{type(exc).__name__}"
        raise
    finally:
        emit_metric(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            session_id=session_id,
            outcome=outcome,
            details=details,
        )
