"""
Text utilities for turning extracted questions into stored content.
"""

from __future__ import annotations

import re


TITLE_MAX_LENGTH = 150
IMAGE_ALT_TEXT = "Imagem de Apoio"


def extract_clean_text_from_markdown(md: str) -> str:
    """Strip markdown syntax and collapse whitespace."""
    text = re.sub(r"!\[.*?\]\(.*?\)", "", md)
    text = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", text)
    text = re.sub(r"[#>*_`~\-]", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def generate_title(statement: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """Build a title from the statement, truncated on a word boundary.

    Args:
        statement: Question statement (may contain markdown)
        max_length: Maximum title length before the ellipsis

    Returns:
        Title string, suffixed with '...' when truncated
    """
    clean = extract_clean_text_from_markdown(statement)
    if len(clean) <= max_length:
        return clean

    title = clean[:max_length]
    last_space = title.rfind(" ")
    if last_space > 0:
        title = title[:last_space]
    return title + "..."


def format_question_body(statement: str, images: list[str] | tuple[str, ...] | None) -> str:
    """Append supporting images to the statement as markdown images."""
    body = statement
    for src in images or ():
        body += f"\n\n![{IMAGE_ALT_TEXT}]({src})"
    return body


def derive_subject_name(unit_label: str) -> str:
    """Derive the subject name from an exam label.

    Labels look like ``2023 - COM110 - Fundamentos de Computação - P1``;
    the subject is the second segment unless it is a short code, in which
    case the third segment is used.
    """
    parts = unit_label.split(" - ")
    if len(parts) > 1 and len(parts[1]) > 6:
        return parts[1].strip()
    if len(parts) > 2:
        return parts[2].strip()
    return unit_label.strip()
