from __future__ import annotations

import pytest

from plu.extract.zone_locator import (
    detect_zone_codes,
    extract_source_articles,
    locate_zone_section,
    validate_zone_code,
)


def test_detect_zones_in_document_order(document_text):
    assert detect_zone_codes(document_text) == ["UB", "N"]


def test_detect_ignores_words_after_zone():
    text = "ZONE DE PROTECTION\nZONE 1AU - zone à urbaniser\nArticle 1AU3 - Accès"
    assert detect_zone_codes(text) == ["1AU"]


def test_detect_single_letter_codes():
    text = "ZONE A - zone agricole\nZONE AU\nSECTEUR Nh"
    assert detect_zone_codes(text) == ["A", "AU", "Nh"]


def test_detect_empty():
    assert detect_zone_codes("") == []
    assert detect_zone_codes("aucun titre de zone ici") == []


def test_locate_by_chapter_heading(document_text):
    section = locate_zone_section(document_text, "UB")
    assert section.startswith("ZONE UB")
    assert "Article UB13" in section
    assert "ZONE N -" not in section
    assert "Article N1" not in section


def test_locate_last_zone_runs_to_end(document_text):
    section = locate_zone_section(document_text, "N")
    assert section.startswith("ZONE N")
    assert "7 mètres" in section
    assert "UB" not in section


def test_locate_by_article_blocks_without_heading():
    body = "Les constructions respectent les règles suivantes du présent article. " * 3
    text = (
        f"Article UA1 - Interdictions\n{body}\n"
        f"Article UA2 - Conditions\n{body}\n"
        f"Article UB1 - Interdictions\nautre zone\n"
    )
    section = locate_zone_section(text, "UA")
    assert "Article UA1" in section
    assert "Article UA2" in section
    assert "autre zone" not in section


def test_locate_is_case_insensitive_on_code(document_text):
    assert locate_zone_section(document_text, "ub") == locate_zone_section(document_text, "UB")


def test_locate_unknown_zone_returns_empty(document_text):
    assert locate_zone_section(document_text, "AUz") == ""
    assert locate_zone_section("", "UB") == ""


def test_source_articles(ub_zone_text):
    arts = extract_source_articles(ub_zone_text, "UB")
    assert arts == ["UB1", "UB2", "UB6", "UB7", "UB9", "UB10", "UB12", "UB13"]


def test_source_articles_with_space_and_duplicates():
    text = "voir Article UB 10 et l'Article UB10 ; Art. UB3"
    assert extract_source_articles(text, "UB") == ["UB10", "UB3"]


@pytest.mark.parametrize("code", ["", "   ", "UBXYZ", "U-B", "12"])
def test_invalid_zone_code(code):
    with pytest.raises(ValueError):
        validate_zone_code(code)


def test_valid_zone_code_is_stripped():
    assert validate_zone_code(" 1AUh ") == "1AUh"


def test_title_case_zone_headings():
    body = "Les constructions nouvelles respectent les règles du présent article. " * 4
    text = (
        f"Zone UB - Zone urbaine mixte\nArticle 1 - Occupations interdites\n{body}\n"
        f"Zone N - Zone naturelle\nArticle 1 - Occupations interdites\n{body}\n"
    )
    assert detect_zone_codes(text) == ["UB", "N"]

    section = locate_zone_section(text, "UB")
    assert section.startswith("Zone UB")
    assert "Zone N -" not in section
