"""
Extraction data structures.

Typed records produced by the extraction state machine. Records are frozen
once emitted; ownership passes to whoever persists them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class Alternative:
    """One labeled answer option of a question."""

    letter: str
    content: str
    is_correct: bool = False
    is_selected: bool = False


@dataclass(frozen=True)
class RecordMetadata:
    """Trailing metadata printed under the alternatives block."""

    week: str | None = None
    difficulty: str | None = None
    objective: str | None = None


@dataclass(frozen=True)
class ParsedAlternatives:
    """Result of parsing the mixed-markup alternatives block."""

    alternatives: tuple[Alternative, ...] = ()
    correct_letter: str | None = None
    selected_letter: str | None = None
    metadata: RecordMetadata = field(default_factory=RecordMetadata)

    @property
    def answered_wrong(self) -> bool:
        return (
            self.selected_letter is not None
            and self.correct_letter is not None
            and self.selected_letter != self.correct_letter
        )


@dataclass(frozen=True)
class RawItem:
    """Raw content of one rendered question, as read from the page."""

    label: str
    statement: str
    alternatives_html: str
    justification: str | None = None
    images: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExtractedRecord:
    """A fully extracted question ready for persistence."""

    item_label: str
    subject_name: str
    statement: str
    alternatives: tuple[Alternative, ...]
    justification: str | None = None
    metadata: RecordMetadata = field(default_factory=RecordMetadata)
    images: tuple[str, ...] = ()
    correct_letter: str | None = None
    selected_letter: str | None = None
    unit_label: str | None = None
    period: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["alternatives"] = [asdict(alt) for alt in self.alternatives]
        data["images"] = list(self.images)
        return data


@dataclass(frozen=True)
class UnitSummary:
    """Identifies one fully processed exam for idempotent resume."""

    period: str
    unit_id: str
    unit_label: str
    items: int = 0
