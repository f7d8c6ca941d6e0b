from plu.extract.textnorm import (
    normalize_document_text,
    normalize_for_matching,
    normalize_hyphenation,
)


def test_dehyphenation_example():
    raw = "Les construc-\ntions sont interdites"
    out = normalize_hyphenation(raw)
    assert "constructions" in out


def test_soft_hyphen_removed():
    raw = "station\u00adnement"
    assert normalize_hyphenation(raw) == "stationnement"


def test_hyphen_kept_inside_line():
    raw = "Rez-de-chaussée et sous-sol"
    assert normalize_hyphenation(raw) == raw


def test_decimal_comma_and_square_metres():
    out = normalize_document_text("1 place pour 12,5 m2 de surface")
    assert out == "1 place pour 12.5 m² de surface"


def test_typographic_marks():
    out = normalize_document_text("l’alignement – «voie»")
    assert out == "l'alignement - \"voie\""


def test_page_numbers_and_blank_lines_dropped():
    out = normalize_document_text("Article UB1\n\n\nPage 3 / 40\nSont interdites")
    assert "Page" not in out
    assert "\n\n" not in out
    assert out.startswith("Article UB1\n")


def test_line_structure_kept_for_documents_only():
    raw = "ZONE UB\nArticle UB1"
    assert "\n" in normalize_document_text(raw)
    assert normalize_for_matching(raw) == "ZONE UB Article UB1"


def test_empty_input():
    assert normalize_document_text("") == ""
    assert normalize_for_matching("") == ""
