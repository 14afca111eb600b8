"""
Decoded inbound message types (TranscriptEvent).

Rules:
- Immutable once decoded.
- Data only; classification lives in protocol.decoder.
- Produced by the decoder, consumed by the session reducer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Tuple, Union


@dataclass(frozen=True)
class ClinicalSummary:
    """
    Terminal session summary.

    Structured sections are ordered lists of strings. When the payload could
    not be parsed, all sections are empty and raw_text carries the original
    text so nothing is lost.
    """
    history: Tuple[str, ...] = ()
    examination: Tuple[str, ...] = ()
    diagnosis: Tuple[str, ...] = ()
    treatment: Tuple[str, ...] = ()
    next_steps: Tuple[str, ...] = ()
    identifiers: str | None = None
    raw_text: str | None = None

    @property
    def is_structured(self) -> bool:
        return self.raw_text is None

    def to_dict(self) -> dict[str, Any]:
        if not self.is_structured:
            return {"raw_text": self.raw_text}
        return {
            "identifiers": self.identifiers,
            "history": list(self.history),
            "examination": list(self.examination),
            "diagnosis": list(self.diagnosis),
            "treatment": list(self.treatment),
            "next_steps": list(self.next_steps),
        }


@dataclass(frozen=True)
class Interim:
    text: str
    speaker_tag: int | None = None
    transcript_id: int | None = None


@dataclass(frozen=True)
class Final:
    text: str
    confidence: float | None = None
    speaker_tag: int | None = None
    transcript_id: int | None = None


@dataclass(frozen=True)
class Summary:
    summary: ClinicalSummary = field(default_factory=ClinicalSummary)


@dataclass(frozen=True)
class RemoteError:
    message: str
    fatal: bool = False


@dataclass(frozen=True)
class TranscriptIdHint:
    """A message carrying only a transcript id (no text)."""
    transcript_id: int


TranscriptEvent = Union[Interim, Final, Summary, RemoteError, TranscriptIdHint]
