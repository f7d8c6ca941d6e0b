from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from plu.errors import GenerativeParseError
from plu.extract.patterns import check_value
from plu.extract.schema import USE_FIELDS, GenerativeResponse, RuleRecord
from plu.extract.textnorm import normalize_for_matching
from plu.extract.zone_locator import extract_source_articles, validate_zone_code
from plu.llm.llm_text_client import LLMTextClient

logger = logging.getLogger(__name__)

MAX_EXCERPT_CHARS = 3000
DEFAULT_CONFIDENCE = 0.5

# where the rules usually are; used to pick windows in long sections
_EXCERPT_KEYWORDS = (
    "hauteur",
    "étage",
    "emprise",
    "recul",
    "limites séparatives",
    "stationnement",
    "espaces verts",
    "interdit",
    "autoris",
    "conditions",
)

_NUMERIC_ANSWER_FIELDS = (
    "hauteur_maximale",
    "nombre_etages_max",
    "emprise_au_sol_max",
    "recul_voirie",
    "recul_limites_separatives",
    "stationnement_habitation",
    "coefficient_espaces_verts",
)


# ---- small utils -------------------------------------------------------------
def window_text(text: str, char_budget: int = MAX_EXCERPT_CHARS) -> str:
    if len(text) <= char_budget:
        return text
    lower = text.lower()
    hits: List[Tuple[int, int]] = []
    for kw in _EXCERPT_KEYWORDS:
        i = lower.find(kw)
        if i >= 0:
            hits.append((max(0, i - 150), min(len(text), i + 450)))
    if not hits:
        head = text[: int(char_budget * 0.85)]
        tail = text[-int(char_budget * 0.15) :]
        return head + "\n...\n" + tail
    windows: List[Tuple[int, int]] = []
    for s, e in sorted(hits):
        if not windows or s > windows[-1][1] + 50:
            windows.append((s, e))
        else:
            windows[-1] = (windows[-1][0], max(windows[-1][1], e))
    pieces: List[str] = []
    for s, e in windows:
        if sum(len(p) for p in pieces) >= char_budget:
            break
        pieces.append(text[s:e])
    return "\n...\n".join(pieces)[:char_budget]


def first_json_object(raw: str) -> Dict[str, Any]:
    """
    First {...} object of a model reply. Anything that is not a complete
    JSON object raises GenerativeParseError; no partial recovery.
    """
    start = (raw or "").find("{")
    if start < 0:
        raise GenerativeParseError("no JSON object in model reply")
    try:
        obj, _ = json.JSONDecoder().raw_decode(raw, start)
    except json.JSONDecodeError as e:
        raise GenerativeParseError(f"invalid JSON in model reply: {e.msg}") from e
    if not isinstance(obj, dict):
        raise GenerativeParseError("model reply is not a JSON object")
    return obj


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def _clean_uses(items: List[str]) -> List[str]:
    out: List[str] = []
    for it in items:
        label = " ".join(str(it).split()).lower()
        if label and label not in out:
            out.append(label)
    return out


def parse_generative_response(raw: str, zone: str, zone_text: str = "") -> RuleRecord:
    obj = first_json_object(raw)
    try:
        parsed = GenerativeResponse.model_validate(obj)
    except ValidationError as e:
        raise GenerativeParseError(
            f"model reply does not match the schema ({e.error_count()} errors)", zone=zone
        ) from e

    values: Dict[str, Any] = {}
    for name in _NUMERIC_ANSWER_FIELDS:
        reported = getattr(parsed, name)
        checked = check_value(name, reported)
        if reported is not None and checked is None:
            logger.info("discarding out-of-range %s=%r for zone %s", name, reported, zone)
        values[name] = checked

    uses = {name: _clean_uses(getattr(parsed, name)) for name in USE_FIELDS}
    confidence = DEFAULT_CONFIDENCE if parsed.confidence is None else _clamp(parsed.confidence)
    if all(v is None for v in values.values()) and not any(uses.values()):
        confidence = 0.0
    articles = extract_source_articles(normalize_for_matching(zone_text), zone) if zone_text else []

    return RuleRecord(
        zone=zone,
        **values,
        **uses,
        source_articles=articles,
        method="generative",
        confidence=round(confidence, 4),
    )


# -----------------------------------------------------------------------------
@dataclass
class GenerativeExtractor:
    """
    Fallback extractor backed by a local text-generation endpoint.
    The endpoint is asked for a strict JSON object (schema sent as Ollama `format`).
    """

    text_client: LLMTextClient
    max_excerpt_chars: int = MAX_EXCERPT_CHARS
    temperature: float = 0.1
    num_predict: int = 1000
    default_timeout_s: float = 60.0

    def extract(
        self,
        zone_text: str,
        zone: str,
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> RuleRecord:
        code = validate_zone_code(zone)
        excerpt = window_text(zone_text, self.max_excerpt_chars)
        prompt = self._build_prompt(excerpt, code)
        raw = self.text_client.generate_raw(
            prompt,
            json_schema=GenerativeResponse.model_json_schema(by_alias=True),
            options={"temperature": self.temperature, "num_predict": self.num_predict},
            timeout_s=timeout_s or self.default_timeout_s,
            cancel=cancel,
        )
        record = parse_generative_response(raw, code, zone_text)
        logger.debug(
            "generative zone=%s rules=%d confidence=%.2f",
            code,
            record.rules_count(),
            record.confidence,
        )
        return record

    # --- helpers --------------------------------------------------------------
    def _build_prompt(self, text: str, zone: str) -> str:
        return f"""
Tu es un expert en urbanisme français. Analyse ce texte de règlement PLU pour la zone {zone} et extrais les informations en JSON strict.

Format de réponse attendu (JSON uniquement) :
{{
  "zone": "{zone}",
  "hauteurMaximale": nombre_en_metres_ou_null,
  "nombreEtagesMax": nombre_entier_ou_null,
  "empriseAuSolMax": decimal_entre_0_et_1_ou_null,
  "reculVoirie": nombre_en_metres_ou_null,
  "reculLimitesSeparatives": nombre_en_metres_ou_null,
  "stationnementHabitation": nombre_de_places_par_logement_ou_null,
  "coefficientEspacesVerts": decimal_entre_0_et_1_ou_null,
  "usagesAutorises": ["liste", "des", "usages"],
  "usagesInterdits": ["liste", "des", "usages"],
  "usagesConditionnes": ["liste", "des", "usages"],
  "confidence": decimal_entre_0_et_1
}}

Règles importantes :
1) Réponds UNIQUEMENT avec l'objet JSON, sans texte autour.
2) Les hauteurs et les reculs sont en mètres ; "R+2" signifie nombreEtagesMax = 2.
3) Convertis les pourcentages en décimal : 40% = 0.4 (empriseAuSolMax, coefficientEspacesVerts).
4) Mets null quand une valeur n'est pas écrite dans le texte ; n'invente rien.
5) Pour les usages, utilise des libellés courts : habitation, commerce, bureau, industrie, artisanat, entrepôt, etc.
6) confidence : 0.9 si toutes les informations sont claires, 0.5 si partielles, 0.2 si très peu.

Texte à analyser :
{text}

JSON :
""".strip()
