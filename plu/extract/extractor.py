from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from plu.extract.patterns import (
    CORE_FIELDS,
    NUMERIC_SPECS,
    PLU_KEYWORDS,
    USE_SPECS,
    Candidate,
    UseLabel,
    apply_pattern,
    find_uses,
    load_use_vocabulary,
)
from plu.extract.schema import RuleRecord
from plu.extract.textnorm import normalize_for_matching
from plu.extract.zone_locator import extract_source_articles, validate_zone_code

logger = logging.getLogger(__name__)

CORE_FIELD_WEIGHT = 0.1
USES_WEIGHT = 0.2
ARTICLES_WEIGHT = 0.1
KEYWORD_WEIGHT = 0.05
KEYWORD_CAP = 0.2


@dataclass
class DeterministicResult:
    record: RuleRecord
    crashed_categories: List[str] = field(default_factory=list)
    candidates: Dict[str, List[Candidate]] = field(default_factory=dict)

    @property
    def crashed(self) -> bool:
        return bool(self.crashed_categories)


# ---------- confidence ----------


def keyword_bonus(text: str) -> float:
    hits = sum(1 for rx in PLU_KEYWORDS if rx.search(text))
    return min(KEYWORD_CAP, KEYWORD_WEIGHT * hits)


def compute_confidence(
    values: Dict[str, object],
    uses: Dict[str, List[str]],
    source_articles: Sequence[str],
    text: str,
) -> float:
    """
    0.1 per populated core field, +0.2 when a use list is non-empty,
    +0.1 when an article reference was found, +0.05 per PLU keyword (max 0.2).
    A record without any numeric value or use is worth 0.
    """
    any_numeric = any(v is not None for v in values.values())
    any_use = any(uses.values())
    if not any_numeric and not any_use:
        return 0.0

    score = CORE_FIELD_WEIGHT * sum(1 for f in CORE_FIELDS if values.get(f) is not None)
    if any_use:
        score += USES_WEIGHT
    if source_articles:
        score += ARTICLES_WEIGHT
    score += keyword_bonus(text)
    return round(min(1.0, score), 4)


# ---------- extraction ----------


def run_deterministic(
    zone_text: str,
    zone: str,
    vocabulary: Optional[Sequence[UseLabel]] = None,
) -> DeterministicResult:
    """
    Runs every pattern category over the zone text.
    A category that raises only loses its own field; it is reported in
    `crashed_categories` so that the caller can decide to fall back.
    """
    if not zone_text or not zone_text.strip():
        raise ValueError("zone_text is empty")
    code = validate_zone_code(zone)
    text = normalize_for_matching(zone_text)
    vocab = load_use_vocabulary() if vocabulary is None else vocabulary

    crashed: List[str] = []
    values: Dict[str, object] = {}
    candidates: Dict[str, List[Candidate]] = {}

    for spec in NUMERIC_SPECS:
        try:
            found = apply_pattern(text, spec)
        except Exception:
            logger.warning("category %s failed on zone %s", spec.name, code, exc_info=True)
            crashed.append(spec.name)
            found = []
        candidates[spec.field] = found
        values[spec.field] = found[0].value if found else None

    uses: Dict[str, List[str]] = {}
    for spec in USE_SPECS:
        try:
            uses[spec.field] = find_uses(text, spec, vocab)
        except Exception:
            logger.warning("category %s failed on zone %s", spec.name, code, exc_info=True)
            crashed.append(spec.name)
            uses[spec.field] = []

    articles = extract_source_articles(text, code)
    confidence = compute_confidence(values, uses, articles, text)

    record = RuleRecord(
        zone=code,
        **values,
        **uses,
        source_articles=articles,
        method="deterministic",
        confidence=confidence,
    )
    logger.debug(
        "deterministic zone=%s rules=%d confidence=%.2f crashed=%s",
        code,
        record.rules_count(),
        confidence,
        crashed,
    )
    return DeterministicResult(record=record, crashed_categories=crashed, candidates=candidates)


def extract_deterministic(zone_text: str, zone: str) -> RuleRecord:
    return run_deterministic(zone_text, zone).record


# ---------- output ----------


def write_jsonl(rows: List[RuleRecord], out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        for r in rows:
            f.write(
                json.dumps(r.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False)
                + "\n"
            )
