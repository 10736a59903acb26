from __future__ import annotations

from examharvest.core.extract.alternatives import (
    parse_alternatives,
    parse_metadata,
    strip_justification,
    truncate_at_metadata,
)

from .conftest import ALTERNATIVES_HTML


def test_parse_alternatives_detects_correct_and_selected_letters():
    parsed = parse_alternatives(ALTERNATIVES_HTML)

    assert parsed.correct_letter == "D"
    assert parsed.selected_letter == "C"
    assert parsed.answered_wrong


def test_parse_alternatives_marks_only_correct_option():
    parsed = parse_alternatives(ALTERNATIVES_HTML)

    letters = [alt.letter for alt in parsed.alternatives]
    assert letters == ["A", "B", "C", "D", "E"]

    correct = [alt.letter for alt in parsed.alternatives if alt.is_correct]
    assert correct == ["D"]

    by_letter = {alt.letter: alt for alt in parsed.alternatives}
    assert by_letter["C"].is_selected
    assert by_letter["C"].content == "Uma pilha"
    assert by_letter["D"].content == "Uma árvore binária de busca"


def test_last_alternative_is_cut_at_metadata():
    parsed = parse_alternatives(ALTERNATIVES_HTML)

    assert parsed.alternatives[-1].content == "Uma tabela hash"


def test_metadata_is_parsed_from_trailing_text():
    parsed = parse_alternatives(ALTERNATIVES_HTML)

    assert parsed.metadata.week == "3"
    assert parsed.metadata.difficulty == "Médio"
    assert parsed.metadata.objective == "Reconhecer estruturas de dados"


def test_selected_defaults_to_correct_without_wrong_cue():
    markup = (
        "A) Verdadeiro<br>"
        '<span style="color: #00a000">B) Falso CORRETA</span><br>'
    )
    parsed = parse_alternatives(markup)

    assert parsed.correct_letter == "B"
    assert parsed.selected_letter == "B"
    assert not parsed.answered_wrong


def test_plain_block_has_no_answer():
    parsed = parse_alternatives("A) um<br>B) dois<br>")

    assert parsed.correct_letter is None
    assert parsed.selected_letter is None
    assert [alt.content for alt in parsed.alternatives] == ["um", "dois"]
    assert not any(alt.is_correct for alt in parsed.alternatives)


def test_empty_markup():
    parsed = parse_alternatives("")

    assert parsed.alternatives == ()
    assert parsed.metadata.week is None


def test_truncate_at_first_marker():
    assert truncate_at_metadata("Opção final Nível de Dificuldade: Fácil Semana: 2") == "Opção final"
    assert truncate_at_metadata("Sem metadados") == "Sem metadados"


def test_parse_metadata_missing_fields():
    meta = parse_metadata("Semana: 5")

    assert meta.week == "5"
    assert meta.difficulty is None
    assert meta.objective is None


def test_strip_justification():
    text = "Justificativa sobre todas as alternativas (corretas e incorretas)\nPorque sim."

    assert strip_justification(text) == "Porque sim."
    assert strip_justification("Justificativa sobre todas as alternativas (corretas e incorretas)") is None
    assert strip_justification(None) is None
