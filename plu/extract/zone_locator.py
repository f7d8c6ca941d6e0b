from __future__ import annotations

import logging
import re
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

MIN_SECTION_CHARS = 200
MAX_CODE_LEN = 4

# zone codes: UB, N, 1AU, AUh, Ua, UB2 ...
_CODE = r"\d?[A-Z]{1,3}[a-z0-9]?"
_RE_VALID_CODE = re.compile(r"^(?=.*[A-Za-z])[A-Za-z0-9]{1,4}$")

_RE_HEADINGS = (
    re.compile(rf"\b(?:ZONE|Zone)\s+({_CODE})\b"),
    re.compile(rf"\b(?:Article|ARTICLE)\s+(\d?[A-Z]{{1,3}}[a-z]?)\s*\d{{1,2}}\b"),
    re.compile(rf"\b(?:SECTEUR|Secteur)\s+({_CODE})\b"),
)

# words that follow "ZONE" in running headings without being codes
_STOPWORDS = {"DE", "DU", "DES", "LA", "LE", "LES", "ET", "EN", "UN", "UNE"}


def validate_zone_code(zone: str) -> str:
    code = (zone or "").strip()
    if not _RE_VALID_CODE.match(code):
        raise ValueError(
            f"invalid zone code {zone!r}: expected 1-4 alphanumerics with at least one letter"
        )
    return code


def _code_rx(code: str) -> str:
    return rf"(?i:{re.escape(code)})"


def _zone_heading_spans(text: str, code: str) -> Iterator[str]:
    # "ZONE UB - Zone urbaine mixte ..." up to the next "ZONE <other code>"
    c = _code_rx(code)
    rx = re.compile(
        rf"\b(?:ZONE|Zone)\s+{c}\b[ \t]*(?:[-:]|\n).*?(?=\b(?:ZONE|Zone)\s+(?!{c}\b){_CODE}\b|\Z)",
        re.DOTALL,
    )
    for m in rx.finditer(text):
        yield m.group(0)


def _article_runs(text: str, code: str, *, numbered: bool = True) -> List[str]:
    # consecutive "Article UB1 ... Article UB2 ..." blocks, cut at another zone's article
    c = _code_rx(code)
    digits = r"\s*\d+" if numbered else r"\d*"
    rx = re.compile(
        rf"\b(?:Article|ARTICLE)\s+{c}{digits}\b.*?"
        rf"(?=\b(?:Article|ARTICLE)\s+(?!{c}\s*\d)|\bZONE\s+(?!{c}\b)|\bZone\s+(?!{c}\b){_CODE}\b|\Z)",
        re.DOTALL,
    )
    return [m.group(0).strip() for m in rx.finditer(text)]


def _inline_spans(text: str, code: str) -> Iterator[str]:
    # "UB - Dispositions ..." up to the next short "XX -" heading line
    c = _code_rx(code)
    rx = re.compile(
        rf"(?<![\w]){c}\s*-\s*[^\n]*.*?(?=\n\s*(?!{c}\s*-){_CODE}\s*-|\Z)",
        re.DOTALL,
    )
    for m in rx.finditer(text):
        yield m.group(0)


def _first_long_enough(spans, min_chars: int) -> Optional[str]:
    for s in spans:
        if len(s) > min_chars:
            return s
    return None


def locate_zone_section(
    full_text: str, zone_code: str, min_section_chars: int = MIN_SECTION_CHARS
) -> str:
    """
    Slice of `full_text` holding the rules of `zone_code`.

    Tries, in order: the "ZONE <code>" chapter, the concatenated
    "Article <code>N" blocks, an inline "<code> - title" section. The first
    one longer than `min_section_chars` wins. Otherwise every
    "Article <code>..." block found anywhere is concatenated.
    Returns "" when nothing matches.
    """
    if not full_text:
        return ""
    code = validate_zone_code(zone_code)

    section = _first_long_enough(_zone_heading_spans(full_text, code), min_section_chars)
    if section:
        logger.debug("zone %s located by chapter heading (%d chars)", code, len(section))
        return section

    runs = _article_runs(full_text, code)
    joined = "\n\n".join(runs)
    if len(joined) > min_section_chars:
        logger.debug("zone %s located by %d article blocks", code, len(runs))
        return joined

    section = _first_long_enough(_inline_spans(full_text, code), min_section_chars)
    if section:
        logger.debug("zone %s located by inline title (%d chars)", code, len(section))
        return section

    loose = _article_runs(full_text, code, numbered=False)
    if loose:
        logger.debug("zone %s: falling back to %d loose article blocks", code, len(loose))
        return "\n\n".join(loose)

    logger.warning("no section found for zone %s", code)
    return ""


def detect_zone_codes(text: str) -> List[str]:
    """
    Zone codes announced by headings (ZONE X, Article X<n>, SECTEUR X),
    in order of first appearance, without duplicates.
    """
    found = []
    for rx in _RE_HEADINGS:
        for m in rx.finditer(text or ""):
            code = m.group(1)
            if len(code) > MAX_CODE_LEN or code.upper() in _STOPWORDS:
                continue
            if not any(ch.isalpha() for ch in code):
                continue
            found.append((m.start(), code))
    found.sort(key=lambda x: x[0])
    out: List[str] = []
    for _, code in found:
        if code not in out:
            out.append(code)
    return out


def extract_source_articles(text: str, zone_code: str) -> List[str]:
    """'Article UB 10' -> 'UB10'; ordered, duplicate-free."""
    c = _code_rx(zone_code)
    rx = re.compile(rf"\b(?:Article|ARTICLE|Art\.)\s*({c}\s*\d{{1,2}}[a-z]?)\b")
    out: List[str] = []
    for m in rx.finditer(text or ""):
        ref = re.sub(r"\s+", "", m.group(1))
        if ref not in out:
            out.append(ref)
    return out
