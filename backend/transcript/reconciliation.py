"""
Transcript reconciliation.

Responsibilities:
- Hold the ordered list of finalized segments
- Hold the single live line (latest interim snapshot)
- Derive counters from finalized segments only

Non-responsibilities:
- No reducer logic (the reducer decides *when* to apply)
- No deduplication (see transcript.consolidation)
- No logging

All operations are pure: they return a new TranscriptView.

Invariants:
- Segments are stored in arrival order; apply_final never reorders or drops
- The live line is replaced wholesale; interim texts are never merged
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple


@dataclass(frozen=True)
class TranscriptSegment:
    """A finalized utterance."""
    id: str
    text: str
    confidence: float | None = None
    speaker_tag: int | None = None
    timestamp_ms: int = 0
    transcript_id: int | None = None


@dataclass(frozen=True)
class LiveLine:
    """The most recent interim snapshot."""
    text: str
    speaker_tag: int | None = None


@dataclass(frozen=True)
class TranscriptView:
    segments: Tuple[TranscriptSegment, ...] = ()
    live_line: LiveLine | None = None


EMPTY_VIEW = TranscriptView()


def apply_final(view: TranscriptView, segment: TranscriptSegment) -> TranscriptView:
    """Append unconditionally. The live line is left as-is."""
    return replace(view, segments=view.segments + (segment,))


def apply_interim(view: TranscriptView, text: str, speaker_tag: int | None = None) -> TranscriptView:
    """Replace the live line with the latest snapshot."""
    return replace(view, live_line=LiveLine(text=text, speaker_tag=speaker_tag))


def clear_live_line(view: TranscriptView) -> TranscriptView:
    if view.live_line is None:
        return view
    return replace(view, live_line=None)


def cleared() -> TranscriptView:
    return EMPTY_VIEW


def segment_count(view: TranscriptView) -> int:
    return len(view.segments)


def word_count(view: TranscriptView) -> int:
    """Words across finalized segments. Interim text is never counted."""
    return sum(len(s.text.split()) for s in view.segments)
