"""
Consolidated transcript read-out.

Interim snapshots are cumulative re-transcriptions of the same audio window,
so a multi-line interim block repeats itself with growing prefixes:

    [SPEAKER_1]: Hello
    [SPEAKER_1]: Hello there
    [SPEAKER_1]: Hello there friend

Consolidation rules:
1. Split into non-empty lines
2. Strip the speaker tag for comparison
3. Walk newest -> oldest, keeping the first occurrence of each line (latest wins)
4. Drop any kept line that is a strict prefix of a later kept line
5. Keep remaining lines in original order

keep_speakers only controls whether the tag survives in the output;
comparison always uses the tag-free text.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple

from constants import SPEAKER_TAG_PATTERN
from transcript.reconciliation import TranscriptView


_SPEAKER_TAG_RE = re.compile(SPEAKER_TAG_PATTERN)


def split_speaker_tag(line: str) -> Tuple[int | None, str]:
    """Return (speaker_number, text) for a line; speaker is None when untagged."""
    stripped = line.strip()
    match = _SPEAKER_TAG_RE.match(stripped)
    if match is None:
        return None, stripped
    return int(match.group(1)), stripped[match.end():].strip()


def strip_speaker_tag(line: str) -> str:
    return split_speaker_tag(line)[1]


def format_speaker_line(text: str, speaker_tag: int | None) -> str:
    if speaker_tag is None:
        return text
    return f"[SPEAKER_{speaker_tag}]: {text}"


def _split_lines(texts: Iterable[str]) -> List[str]:
    out: List[str] = []
    for block in texts:
        out.extend(line.strip() for line in block.splitlines() if line.strip())
    return out


def consolidate_lines(lines: Iterable[str], keep_speakers: bool = False) -> List[str]:
    """Apply the consolidation rules to a sequence of raw lines (or blocks)."""
    seen: set[str] = set()
    kept: List[Tuple[str, str]] = []  # (comparison key, output text), newest first

    for raw in reversed(_split_lines(lines)):
        key = strip_speaker_tag(raw)
        if not key or key in seen:
            continue
        seen.add(key)
        kept.append((key, raw if keep_speakers else key))

    kept.reverse()

    result: List[str] = []
    for i, (key, output) in enumerate(kept):
        superseded = any(
            later != key and later.startswith(key) for later, _ in kept[i + 1:]
        )
        if not superseded:
            result.append(output)
    return result


def consolidate_text(text: str, keep_speakers: bool = False) -> str:
    """
    Consolidate one multi-line block.

    Plain output joins utterances with spaces; speaker-tagged output keeps
    one utterance per line.
    """
    lines = consolidate_lines([text], keep_speakers=keep_speakers)
    return ("\n" if keep_speakers else " ").join(lines).strip()


def full_transcript(view: TranscriptView, include_speakers: bool = True) -> str:
    """
    Finalized segments joined by blank lines, followed by the consolidated
    live line (if any).
    """
    parts = [
        format_speaker_line(s.text, s.speaker_tag if include_speakers else None)
        for s in view.segments
        if s.text
    ]
    if view.live_line is not None and view.live_line.text:
        live = consolidate_text(view.live_line.text, keep_speakers=include_speakers)
        if live:
            parts.append(live)
    return "\n\n".join(parts).strip()
