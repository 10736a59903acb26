"""
Alternatives block parser.

The portal renders the answer options as one mixed-markup block: plain
text lines for neutral options, a red span around the option the student
picked when it was wrong, and a green span (with a CORRETA marker) around
the official answer. Question metadata trails the last option as free
text.

The selected letter is inferred from colour cues only. A blank answer
renders like a correct one, so treat ``selected_letter`` as best effort.
"""

from __future__ import annotations

import copy
import re

from lxml import html as lxml_html

from .base import Alternative, ParsedAlternatives, RecordMetadata


CORRECT_STYLE_CUE = "#00a000"
CORRECT_TEXT_CUE = "CORRETA"
WRONG_STYLE_CUE = "#ff0000"
WRONG_TEXT_CUE = "ERRADA"

JUSTIFICATION_HEADING = "Justificativa sobre todas as alternativas (corretas e incorretas)"

METADATA_MARKERS = ("Semana:", "Nível de Dificuldade:", "Objetivo de Aprendizado:")

_BLOCK_TAGS = {"p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6"}

_LETTER_RE = re.compile(r"([A-E])\)")
_OPTION_RE = re.compile(r"([A-E])\)\s+([\s\S]+?)(?=[A-E]\)|\Z)")
_SYSTEM_PHRASES = (
    re.compile(r"Você marcou a alternativa ERRADA"),
    re.compile(CORRECT_TEXT_CUE),
    re.compile(r"Justificativa sobre todas as alternativas.*"),
)

_WEEK_RE = re.compile(r"Semana:\s*(.+?)(?:/|\n|\Z)")
_DIFFICULTY_RE = re.compile(r"Nível de Dificuldade:\s*(.+?)(?:\n|\Z)")
_OBJECTIVE_RE = re.compile(r"Objetivo de Aprendizado:\s*([\s\S]+?)\Z")


def clean_text(text: str) -> str:
    """Collapse runs of whitespace and trim."""
    return re.sub(r"\s+", " ", text).strip()


def inner_text(element: lxml_html.HtmlElement) -> str:
    """Approximate the browser's innerText: line breaks for <br> and blocks."""
    element = copy.deepcopy(element)
    for node in element.iter():
        if not isinstance(node.tag, str):
            continue
        if node.tag == "br":
            node.tail = "\n" + (node.tail or "")
        elif node.tag in _BLOCK_TAGS:
            node.tail = "\n" + (node.tail or "")
    return element.text_content()


def _to_fragment(markup: str) -> lxml_html.HtmlElement:
    return lxml_html.fragment_fromstring(markup or "", create_parent="div")


def detect_answer_letters(root: lxml_html.HtmlElement) -> tuple[str | None, str | None]:
    """Scan spans for the correct and wrong visual cues.

    Returns:
        (correct_letter, selected_letter). The selected letter defaults to
        the correct one when no wrong cue is present.
    """
    correct_letter: str | None = None
    selected_letter: str | None = None

    for span in root.iter("span"):
        style = (span.get("style") or "").lower()
        text = inner_text(span)

        if CORRECT_STYLE_CUE in style or CORRECT_TEXT_CUE in text:
            match = _LETTER_RE.search(text)
            if match:
                correct_letter = match.group(1)

        if WRONG_STYLE_CUE in style or WRONG_TEXT_CUE in text:
            match = _LETTER_RE.search(text)
            if match:
                selected_letter = match.group(1)

    if selected_letter is None and correct_letter is not None:
        selected_letter = correct_letter

    return correct_letter, selected_letter


def truncate_at_metadata(text: str) -> str:
    """Cut text at the first metadata marker, if any."""
    positions = [text.find(marker) for marker in METADATA_MARKERS]
    positions = [p for p in positions if p != -1]
    if not positions:
        return text
    return text[: min(positions)].strip()


def parse_metadata(text: str) -> RecordMetadata:
    """Pull week, difficulty and learning objective from trailing free text."""
    week = _WEEK_RE.search(text)
    difficulty = _DIFFICULTY_RE.search(text)
    objective = _OBJECTIVE_RE.search(text)

    return RecordMetadata(
        week=clean_text(week.group(1)) if week else None,
        difficulty=clean_text(difficulty.group(1)) if difficulty else None,
        objective=clean_text(objective.group(1)) if objective else None,
    )


def parse_alternatives(markup: str) -> ParsedAlternatives:
    """Parse the alternatives block of a question.

    Args:
        markup: Inner HTML of the alternatives container

    Returns:
        ParsedAlternatives with options, answer letters and metadata
    """
    root = _to_fragment(markup)
    correct_letter, selected_letter = detect_answer_letters(root)

    raw_text = inner_text(root)
    full_text = raw_text
    for phrase in _SYSTEM_PHRASES:
        full_text = phrase.sub("", full_text)

    matches = list(_OPTION_RE.finditer(full_text))
    alternatives: list[Alternative] = []

    for index, match in enumerate(matches):
        letter = match.group(1)
        content = clean_text(match.group(2))

        # metadata trails the final option
        if index == len(matches) - 1:
            content = truncate_at_metadata(content)

        alternatives.append(
            Alternative(
                letter=letter,
                content=content,
                is_correct=letter == correct_letter,
                is_selected=letter == selected_letter,
            )
        )

    return ParsedAlternatives(
        alternatives=tuple(alternatives),
        correct_letter=correct_letter,
        selected_letter=selected_letter,
        metadata=parse_metadata(raw_text),
    )


def strip_justification(text: str | None) -> str | None:
    """Remove the boilerplate heading from a justification block."""
    if text is None:
        return None
    stripped = text.replace(JUSTIFICATION_HEADING, "").strip()
    return stripped or None
