"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_min_level: int = _LEVELS["DEBUG"]
_json_lines: bool = True


def configure(*, log_level: str = "DEBUG", json_lines: bool = True) -> None:
    """
    Set the minimum level and output format.

    Called once at startup from AppConfig. Unknown level names fall back
    to DEBUG (log everything).
    """
    global _min_level, _json_lines  # pylint: disable=global-statement
    _min_level = _LEVELS.get(log_level.upper(), _LEVELS["DEBUG"])
    _json_lines = json_lines


def _format_plain(event: Mapping[str, Any]) -> str:
    head = f"[{event.get('level', 'INFO')}] {event.get('event_type', '-')}"
    rest = " ".join(
        f"{k}={v!r}" for k, v in event.items() if k not in ("level", "event_type")
    )
    return f"{head} {rest}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller is responsible for:
    - Supplying an event dict with an "event_type"
    - Including session_id / phase where known

    This function:
    - Adds ts_ms and level when missing
    - Drops events below the configured level
    - Writes exactly one line, flushed immediately
    - Never raises
    """
    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _min_level:
        return

    record: dict[str, Any] = {"ts_ms": int(time.time() * 1000), "level": level}
    record.update(event)

    if not _json_lines:
        _print(_format_plain(record))
        return

    try:
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback; logging must never crash the session
        fallback: dict[str, Any] = {
            "ts_ms": record.get("ts_ms"),
            "level": "ERROR",
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
