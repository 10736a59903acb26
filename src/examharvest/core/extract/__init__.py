"""Record types and markup parsing for extracted questions."""

from .alternatives import parse_alternatives, strip_justification
from .base import (
    Alternative,
    ExtractedRecord,
    ParsedAlternatives,
    RawItem,
    RecordMetadata,
    UnitSummary,
)

__all__ = [
    "Alternative",
    "ExtractedRecord",
    "ParsedAlternatives",
    "RawItem",
    "RecordMetadata",
    "UnitSummary",
    "parse_alternatives",
    "strip_justification",
]
