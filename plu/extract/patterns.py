from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import yaml

VOCABULARY_PATH = Path(__file__).with_name("use_vocabulary.yaml")

MAX_CANDIDATES = 5

# building blocks (input is normalize_for_matching() output: single spaces,
# decimal dots, "m²", straight quotes)
NUM = r"(?<![\d.])(\d+(?:\.\d+)?)"
INT = r"(?<![\d.])(\d{1,2})(?!\d|\.\d)"
METRES = r"\s*(?:m[èe]tres?\b|m\b)"
GAP = r"[^.;]*?"
GAP_NO_DIGIT = r"[^.;\d]*?"
SPAN = r"([^.]+?)(?=\.|\bArticle\b|$)"


def _rx(pattern: str, *, ignore_case: bool = True) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE if ignore_case else 0)


# ---------- transformers / validators ----------


def to_float(groups: Tuple[str, ...]) -> float:
    return float(groups[0].replace(",", "."))


def to_int(groups: Tuple[str, ...]) -> int:
    v = to_float(groups)
    if not v.is_integer():
        raise ValueError(f"not an integer: {groups[0]}")
    return int(v)


def to_fraction(groups: Tuple[str, ...]) -> float:
    """40 -> 0.40 ; 0.4 -> 0.4"""
    return percent_to_fraction(to_float(groups))


def percent_to_fraction(v: float) -> float:
    return v if v <= 1 else v / 100.0


def to_ratio(groups: Tuple[str, ...]) -> float:
    """N places pour M m² -> N / M (ZeroDivisionError discards the candidate)"""
    places, surface = float(groups[0]), float(groups[1])
    return places / surface


def in_range(lo: float, hi: float, *, lo_open: bool = False) -> Callable[[float], bool]:
    def check(v: float) -> bool:
        lower_ok = v > lo if lo_open else v >= lo
        return lower_ok and v <= hi

    return check


# ---------- pattern specs ----------


@dataclass(frozen=True)
class PatternSpec:
    name: str
    field: str  # RuleRecord attribute
    patterns: Tuple[re.Pattern, ...]
    validator: Callable[[float], bool]
    transformer: Callable[[Tuple[str, ...]], float] = to_float
    priority: int = 1
    percent: bool = False
    integer: bool = False


@dataclass(frozen=True)
class Candidate:
    value: float
    match: str
    pattern: str
    priority: int
    start: int


HEIGHT = PatternSpec(
    name="height",
    field="hauteur_maximale",
    patterns=(
        _rx(rf"hauteur{GAP}maximale?{GAP}{NUM}{METRES}"),
        _rx(rf"hauteur{GAP}(?:exc[ée]der|d[ée]passer|sup[ée]rieure?\s+[àa]){GAP}{NUM}{METRES}"),
        _rx(rf"hauteur\s*:?\s*{NUM}{METRES}"),
        _rx(rf"{NUM}{METRES}{GAP}fa[îi]tage"),
        _rx(rf"hauteur{GAP}{NUM}{METRES}"),
    ),
    validator=in_range(0, 50, lo_open=True),
    priority=2,
)

RIDGE_HEIGHT = PatternSpec(
    name="ridge_height",
    field="hauteur_au_faitage",
    patterns=(
        _rx(rf"{NUM}{METRES}{GAP}fa[îi]tage"),
        _rx(rf"fa[îi]tage{GAP}{NUM}{METRES}"),
    ),
    validator=in_range(0, 50, lo_open=True),
)

PARAPET_HEIGHT = PatternSpec(
    name="parapet_height",
    field="hauteur_acrotere",
    patterns=(
        _rx(rf"{NUM}{METRES}{GAP}acrot[èe]re"),
        _rx(rf"acrot[èe]re{GAP}{NUM}{METRES}"),
    ),
    validator=in_range(0, 50, lo_open=True),
)

FLOORS = PatternSpec(
    name="floors",
    field="nombre_etages_max",
    patterns=(
        _rx(rf"\bR\s*(?:DC)?\s*\+\s*{INT}"),
        _rx(rf"rez{GAP}plus\s*{INT}\s*[ée]tages?"),
        _rx(rf"{INT}\s*[ée]tages?{GAP}maximum"),
        _rx(rf"(?:exc[ée]der|d[ée]passer){GAP}{INT}\s*[ée]tages?"),
        _rx(rf"[ée]tages?\s*:?\s*{INT}"),
    ),
    validator=in_range(0, 10),
    transformer=to_int,
    priority=2,
    integer=True,
)

FOOTPRINT = PatternSpec(
    name="footprint",
    field="emprise_au_sol_max",
    patterns=(
        _rx(
            rf"emprise{GAP}sol{GAP}(?:exc[ée]der|d[ée]passer|sup[ée]rieure?\s+[àa]"
            rf"|limit[ée]e?\s+[àa]|fix[ée]e?\s+[àa]|maximale?){GAP}{NUM}\s*%"
        ),
        _rx(rf"emprise{GAP}sol\s*(?:maximale?\s*)?:?\s*{NUM}\s*%"),
        _rx(rf"coefficient\s+d'emprise(?:\s+au\s+sol)?[^.;\d]*{NUM}"),
        _rx(rf"\bCES\b\s*(?:[=:]|est\s+de|est\s+fix[ée]\s+[àa]|de)\s*{NUM}", ignore_case=False),
        _rx(rf"{NUM}\s*%\s*(?:maximum\s+)?d'emprise"),
        _rx(rf"emprise{GAP}{NUM}\s*%"),
    ),
    validator=in_range(0, 1, lo_open=True),
    transformer=to_fraction,
    priority=2,
    percent=True,
)

LAND_OCCUPATION = PatternSpec(
    name="land_occupation",
    field="coefficient_occupation_sol",
    patterns=(
        _rx(
            rf"coefficient\s+d'occupation\s+(?:du|des)\s+sols?\s*(?:\(COS\)\s*)?(?:maximal\s*)?"
            rf"(?:est\s+(?:fix[ée]|limit[ée])\s+[àa]|est\s+de|de|=|:)\s*{NUM}"
        ),
        _rx(rf"\bCOS\b\s*(?:[=:]|est\s+de|de)\s*{NUM}", ignore_case=False),
    ),
    validator=in_range(0, 5, lo_open=True),
)

FRONT_SETBACK = PatternSpec(
    name="front_setback",
    field="recul_voirie",
    patterns=(
        _rx(
            rf"recul{GAP}{NUM}{METRES}{GAP}"
            rf"(?:alignement|voies?|voirie|emprises?\s+publiques?)"
        ),
        _rx(
            rf"(?:alignement|voies?\s+(?:publiques?|priv[ée]es?)|voirie|emprises?\s+publiques?"
            rf"|domaine\s+public){GAP}{NUM}{METRES}"
        ),
        _rx(rf"{NUM}{METRES}\s+(?:de|depuis)\s+(?:la\s+)?(?:voirie|voie|l'alignement)"),
        _rx(rf"{NUM}{METRES}\s+de\s+recul"),
        _rx(rf"recul{GAP}minimum{GAP}{NUM}{METRES}"),
        _rx(rf"retrait{GAP}{NUM}{METRES}"),
    ),
    validator=in_range(0, 50),
    priority=2,
)

SIDE_SETBACK = PatternSpec(
    name="side_setback",
    field="recul_limites_separatives",
    patterns=(
        _rx(rf"limites?\s+s[ée]paratives?{GAP}{NUM}{METRES}"),
        _rx(rf"{NUM}{METRES}{GAP}limites?\s+s[ée]paratives?"),
        _rx(rf"recul{GAP}limites?{GAP}{NUM}{METRES}"),
    ),
    validator=in_range(0, 50),
)

PARKING_DWELLING = PatternSpec(
    name="parking_dwelling",
    field="stationnement_habitation",
    patterns=(
        _rx(rf"{NUM}\s*places?{GAP_NO_DIGIT}(?:par|pour\s+chaque)\s+logements?"),
        _rx(rf"{NUM}\s*places?{GAP_NO_DIGIT}(?:logements?|habitations?)"),
        _rx(rf"stationnement\s*:?\s*{NUM}\s*places?\s*/\s*logements?"),
        _rx(rf"(?:logements?|habitations?)\s*:?\s*{NUM}\s*places?"),
    ),
    validator=in_range(0, 10),
    priority=2,
)

_PER_AREA = rf"{NUM}\s*places?{GAP_NO_DIGIT}(?:pour|par)\s+(?:chaque\s+)?(?:tranche\s+(?:entam[ée]e\s+)?de\s+)?{NUM}\s*m²"

PARKING_OFFICES = PatternSpec(
    name="parking_offices",
    field="stationnement_bureaux",
    patterns=(
        _rx(rf"bureaux?{GAP}{_PER_AREA}"),
        _rx(rf"{_PER_AREA}{GAP_NO_DIGIT}bureaux?"),
    ),
    validator=in_range(0, 10, lo_open=True),
    transformer=to_ratio,
)

PARKING_RETAIL = PatternSpec(
    name="parking_retail",
    field="stationnement_commerce",
    patterns=(
        _rx(rf"commerces?{GAP}{_PER_AREA}"),
        _rx(rf"{_PER_AREA}{GAP_NO_DIGIT}(?:commerces?|commerciale?s?|vente)"),
    ),
    validator=in_range(0, 10, lo_open=True),
    transformer=to_ratio,
)

GREEN_SPACE = PatternSpec(
    name="green_space",
    field="coefficient_espaces_verts",
    patterns=(
        _rx(rf"{NUM}\s*%{GAP}espaces?\s+verts?"),
        _rx(rf"espaces?\s+verts?{GAP}{NUM}\s*%"),
        _rx(rf"coefficient{GAP}espaces?\s+verts?[^.;\d]*{NUM}"),
        _rx(rf"plantations?{GAP}{NUM}\s*%{GAP}(?:parcelle|terrain)"),
    ),
    validator=in_range(0, 1),
    transformer=to_fraction,
    percent=True,
)

OPEN_SPACE = PatternSpec(
    name="open_space",
    field="espaces_libres_min",
    patterns=(
        _rx(rf"espaces?\s+libres?{GAP}{NUM}\s*%"),
        _rx(rf"{NUM}\s*%{GAP}espaces?\s+libres?"),
    ),
    validator=in_range(0, 1),
    transformer=to_fraction,
    percent=True,
)

NUMERIC_SPECS: Tuple[PatternSpec, ...] = (
    HEIGHT,
    RIDGE_HEIGHT,
    PARAPET_HEIGHT,
    FLOORS,
    FOOTPRINT,
    LAND_OCCUPATION,
    FRONT_SETBACK,
    SIDE_SETBACK,
    PARKING_DWELLING,
    PARKING_OFFICES,
    PARKING_RETAIL,
    GREEN_SPACE,
    OPEN_SPACE,
)

SPEC_BY_FIELD: Dict[str, PatternSpec] = {s.field: s for s in NUMERIC_SPECS}


def apply_pattern(text: str, spec: PatternSpec) -> List[Candidate]:
    """
    Run every regex of `spec` (declaration order) over `text`.
    Returns at most MAX_CANDIDATES valid candidates, best priority first,
    discovery order kept among equals. Never raises on unmatched input.
    """
    if not text:
        return []
    found: List[Candidate] = []
    for rx in spec.patterns:
        for m in rx.finditer(text):
            groups = tuple(g for g in m.groups() if g is not None)
            if not groups:
                continue
            try:
                value = spec.transformer(groups)
            except (ValueError, ZeroDivisionError, IndexError):
                continue
            if not spec.validator(value):
                continue
            found.append(
                Candidate(
                    value=value,
                    match=m.group(0),
                    pattern=rx.pattern,
                    priority=spec.priority,
                    start=m.start(),
                )
            )
    found.sort(key=lambda c: -c.priority)  # stable
    return found[:MAX_CANDIDATES]


def check_value(field: str, value: Optional[float]) -> Optional[float]:
    """
    Range check for values that did not come from a regex (generative path).
    Percent-like fields are normalized first; out-of-range -> None.
    """
    if value is None:
        return None
    spec = SPEC_BY_FIELD[field]
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if spec.percent:
        v = percent_to_fraction(v)
    if spec.integer:
        if not v.is_integer():
            return None
        v = int(v)
    return v if spec.validator(v) else None


# ---------- uses ----------


@dataclass(frozen=True)
class UseIntentSpec:
    name: str
    field: str
    markers: Tuple[re.Pattern, ...]


FORBIDDEN_USES = UseIntentSpec(
    name="forbidden_uses",
    field="usages_interdits",
    markers=(
        _rx(rf"sont\s+interdite?s?\s*:?\s*{SPAN}"),
        _rx(rf"occupations?{GAP}interdite?s?\s*:?\s*{SPAN}"),
        _rx(rf"ne\s+sont\s+pas\s+(?:autoris[ée]e?s?|admise?s?)\s*:?\s*{SPAN}"),
        _rx(rf"prohib[ée]e?s?\s*:?\s*{SPAN}"),
    ),
)

AUTHORISED_USES = UseIntentSpec(
    name="authorised_uses",
    field="usages_autorises",
    markers=(
        _rx(rf"sont\s+autoris[ée]e?s?\b(?!\s+sous\s+condition)\s*:?\s*{SPAN}"),
        _rx(rf"occupations?{GAP}(?<!pas )(?<!non )autoris[ée]e?s?\b(?!\s+sous\s+condition)\s*:?\s*{SPAN}"),
        _rx(rf"constructions?\s+autoris[ée]e?s?\b(?!\s+sous\s+condition)\s*:?\s*{SPAN}"),
        _rx(rf"sont\s+admise?s?\b(?!\s+sous\s+condition)\s*:?\s*{SPAN}"),
    ),
)

CONDITIONAL_USES = UseIntentSpec(
    name="conditional_uses",
    field="usages_conditionnes",
    markers=(
        _rx(rf"soumise?s?\s+[àa]\s+conditions?(?:\s+particuli[èe]res?)?\s*:?\s*{SPAN}"),
        _rx(rf"sous\s+conditions?\s*:?\s*{SPAN}"),
        _rx(rf"conditions?\s+particuli[èe]res?\s*:?\s*{SPAN}"),
    ),
)

USE_SPECS: Tuple[UseIntentSpec, ...] = (AUTHORISED_USES, FORBIDDEN_USES, CONDITIONAL_USES)


@dataclass(frozen=True)
class UseLabel:
    label: str
    pattern: re.Pattern


@lru_cache(maxsize=4)
def load_use_vocabulary(path: Path = VOCABULARY_PATH) -> Tuple[UseLabel, ...]:
    rows = yaml.safe_load(path.read_text(encoding="utf-8"))
    out: List[UseLabel] = []
    for r in rows:
        synonyms: Sequence[str] = r.get("synonyms") or [re.escape(r["label"])]
        rx = _rx(r"\b(?:" + "|".join(synonyms) + r")\b")
        out.append(UseLabel(label=r["label"], pattern=rx))
    return tuple(out)


def find_uses(text: str, spec: UseIntentSpec, vocabulary: Sequence[UseLabel]) -> List[str]:
    """
    Labels whose synonyms occur inside a span that follows one of the intent
    markers. Ordered by first occurrence, without duplicates.
    """
    hits: List[Tuple[int, str]] = []
    for rx in spec.markers:
        for m in rx.finditer(text):
            span = m.group(1)
            base = m.start(1)
            for use in vocabulary:
                u = use.pattern.search(span)
                if u:
                    hits.append((base + u.start(), use.label))
    hits.sort(key=lambda h: h[0])
    out: List[str] = []
    for _, label in hits:
        if label not in out:
            out.append(label)
    return out


# ---------- document-level vocabulary ----------

PLU_KEYWORDS: Tuple[re.Pattern, ...] = (
    _rx(r"\barticles?\b"),
    _rx(r"\bconstructions?\b"),
    _rx(r"\bterrains?\b"),
    _rx(r"\bzones?\b"),
    _rx(r"\br[èe]glement"),
)

CORE_FIELDS = (
    "hauteur_maximale",
    "nombre_etages_max",
    "emprise_au_sol_max",
    "recul_voirie",
    "stationnement_habitation",
)
