from __future__ import annotations

from examharvest.core.normalize.text import (
    derive_subject_name,
    extract_clean_text_from_markdown,
    format_question_body,
    generate_title,
)


def test_generate_title_keeps_short_statement():
    assert generate_title("Qual é a **capital** do Brasil?") == "Qual é a capital do Brasil?"


def test_generate_title_truncates_on_word_boundary():
    statement = " ".join(["palavra"] * 40)

    title = generate_title(statement, max_length=30)

    assert title.endswith("...")
    assert len(title) <= 33
    assert not title[:-3].endswith(" ")
    assert title[:-3].split(" ")[-1] == "palavra"


def test_markdown_images_and_links_are_stripped():
    md = "Veja ![fig](http://x/y.png) o [texto](http://z) # título"

    assert extract_clean_text_from_markdown(md) == "Veja o texto título"


def test_format_question_body_appends_images():
    body = format_question_body("Enunciado", ["a.png", "b.png"])

    assert body == "Enunciado\n\n![Imagem de Apoio](a.png)\n\n![Imagem de Apoio](b.png)"
    assert format_question_body("Enunciado", None) == "Enunciado"


def test_subject_from_long_second_segment():
    assert derive_subject_name("2023 - Algoritmos e Programação - P1") == "Algoritmos e Programação"


def test_subject_skips_course_code():
    assert derive_subject_name("2023 - COM110 - Fundamentos de Computação - P1") == "Fundamentos de Computação"


def test_subject_falls_back_to_label():
    assert derive_subject_name("Prova Única") == "Prova Única"
