"""Normalization helpers for persisted question text."""

from .text import (
    derive_subject_name,
    extract_clean_text_from_markdown,
    format_question_body,
    generate_title,
)

__all__ = [
    "derive_subject_name",
    "extract_clean_text_from_markdown",
    "format_question_body",
    "generate_title",
]
