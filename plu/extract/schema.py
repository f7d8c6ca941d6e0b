from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Method = Literal["deterministic", "generative"]
MetricsMethod = Literal["cache", "deterministic", "generative", "failed"]
ZoneType = Literal["U", "AU", "A", "N", "UNKNOWN"]

NUMERIC_FIELDS = (
    "hauteur_maximale",
    "hauteur_au_faitage",
    "hauteur_acrotere",
    "nombre_etages_max",
    "emprise_au_sol_max",
    "coefficient_occupation_sol",
    "recul_voirie",
    "recul_limites_separatives",
    "stationnement_habitation",
    "stationnement_bureaux",
    "stationnement_commerce",
    "coefficient_espaces_verts",
    "espaces_libres_min",
)

USE_FIELDS = ("usages_autorises", "usages_interdits", "usages_conditionnes")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def zone_type_of(zone: str) -> ZoneType:
    z = zone.upper()
    if z.startswith("U"):
        return "U"
    if "AU" in z:
        return "AU"
    if z.startswith("A"):
        return "A"
    if z.startswith("N"):
        return "N"
    return "UNKNOWN"


def _fmt_number(v: float) -> str:
    # 12.0 -> "12", 2.5 -> "2.5"
    return f"{v:g}"


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for it in items:
        key = it.strip()
        if key and key.lower() not in seen:
            seen.add(key.lower())
            out.append(key)
    return out


class RuleRecord(BaseModel):
    """
    Structured construction rules of one zone.

    Field names are French snake_case in Python and camelCase on the wire
    (hauteurMaximale, usagesInterdits, ...). Absent values mean "unknown",
    never zero. Cached JSON carries the computed fields as well; they are
    ignored on re-validation.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    zone: str = Field(..., min_length=1, max_length=4)

    # heights (m)
    hauteur_maximale: Optional[float] = Field(default=None, gt=0, le=50)
    hauteur_au_faitage: Optional[float] = Field(default=None, gt=0, le=50)
    hauteur_acrotere: Optional[float] = Field(default=None, gt=0, le=50)
    nombre_etages_max: Optional[int] = Field(default=None, ge=0, le=10)

    # ratios (fractions)
    emprise_au_sol_max: Optional[float] = Field(default=None, gt=0, le=1)
    coefficient_occupation_sol: Optional[float] = Field(default=None, gt=0, le=5)

    # setbacks (m)
    recul_voirie: Optional[float] = Field(default=None, ge=0, le=50)
    recul_limites_separatives: Optional[float] = Field(default=None, ge=0, le=50)

    # parking: per dwelling, or places per m² of floor area
    stationnement_habitation: Optional[float] = Field(default=None, ge=0, le=10)
    stationnement_bureaux: Optional[float] = Field(default=None, gt=0, le=10)
    stationnement_commerce: Optional[float] = Field(default=None, gt=0, le=10)

    # green / open space (fractions)
    coefficient_espaces_verts: Optional[float] = Field(default=None, ge=0, le=1)
    espaces_libres_min: Optional[float] = Field(default=None, ge=0, le=1)

    usages_autorises: List[str] = Field(default_factory=list)
    usages_interdits: List[str] = Field(default_factory=list)
    usages_conditionnes: List[str] = Field(default_factory=list)

    source_articles: List[str] = Field(default_factory=list)
    method: Method = "deterministic"
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    last_updated: str = Field(default_factory=utc_now_iso)

    @field_validator(
        "usages_autorises", "usages_interdits", "usages_conditionnes", "source_articles"
    )
    @classmethod
    def _no_duplicates(cls, v: List[str]) -> List[str]:
        return _dedupe(v)

    @field_validator("zone")
    @classmethod
    def _strip_zone(cls, v: str) -> str:
        return re.sub(r"\s+", "", v)

    @model_validator(mode="after")
    def _check_empty_confidence(self) -> "RuleRecord":
        if not self.has_rules() and self.confidence:
            raise ValueError("a record without rules must have confidence 0")
        return self

    def has_rules(self) -> bool:
        return self.rules_count() > 0

    def rules_count(self) -> int:
        n = sum(1 for f in NUMERIC_FIELDS if getattr(self, f) is not None)
        return n + sum(len(getattr(self, f)) for f in USE_FIELDS)

    @computed_field(alias="zoneType")
    @property
    def zone_type(self) -> ZoneType:
        return zone_type_of(self.zone)

    @computed_field
    @property
    def restrictions(self) -> List[str]:
        out: List[str] = []
        if self.hauteur_maximale is not None:
            out.append(f"Hauteur maximale : {_fmt_number(self.hauteur_maximale)} mètres")
        if self.hauteur_au_faitage is not None:
            out.append(f"Hauteur au faîtage : {_fmt_number(self.hauteur_au_faitage)} mètres")
        if self.hauteur_acrotere is not None:
            out.append(f"Hauteur à l'acrotère : {_fmt_number(self.hauteur_acrotere)} mètres")
        if self.nombre_etages_max is not None:
            out.append(f"Nombre d'étages maximum : R+{self.nombre_etages_max}")
        if self.emprise_au_sol_max is not None:
            pct = round(self.emprise_au_sol_max * 100, 2)
            out.append(f"Emprise au sol maximale : {_fmt_number(pct)}%")
        if self.coefficient_occupation_sol is not None:
            out.append(
                f"Coefficient d'occupation des sols : {_fmt_number(self.coefficient_occupation_sol)}"
            )
        if self.recul_voirie is not None:
            out.append(f"Recul minimum voirie : {_fmt_number(self.recul_voirie)} mètres")
        if self.recul_limites_separatives is not None:
            out.append(
                f"Recul limites séparatives : {_fmt_number(self.recul_limites_separatives)} mètres"
            )
        if self.stationnement_habitation is not None:
            out.append(
                f"Stationnement : {_fmt_number(self.stationnement_habitation)} place(s) par logement"
            )
        if self.stationnement_bureaux is not None:
            out.append(
                f"Stationnement bureaux : 1 place pour {_fmt_number(round(1 / self.stationnement_bureaux, 1))} m²"
            )
        if self.stationnement_commerce is not None:
            out.append(
                f"Stationnement commerces : 1 place pour {_fmt_number(round(1 / self.stationnement_commerce, 1))} m²"
            )
        if self.coefficient_espaces_verts is not None:
            pct = round(self.coefficient_espaces_verts * 100, 2)
            out.append(f"Espaces verts minimum : {_fmt_number(pct)}%")
        if self.espaces_libres_min is not None:
            pct = round(self.espaces_libres_min * 100, 2)
            out.append(f"Espaces libres minimum : {_fmt_number(pct)}%")
        for usage in self.usages_interdits:
            out.append(f"{usage[:1].upper()}{usage[1:]} interdit")
        return out

    @computed_field
    @property
    def rights(self) -> List[str]:
        out = [f"{u[:1].upper()}{u[1:]} autorisé" for u in self.usages_autorises]
        out += [
            f"{u[:1].upper()}{u[1:]} autorisé sous conditions"
            for u in self.usages_conditionnes
        ]
        return out

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class GenerativeResponse(BaseModel):
    """
    Shape requested from the local model (passed as Ollama `format`).
    Values are checked again against the record ranges before use.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    zone: Optional[str] = None
    hauteur_maximale: Optional[float] = None
    nombre_etages_max: Optional[float] = None
    emprise_au_sol_max: Optional[float] = None
    recul_voirie: Optional[float] = None
    recul_limites_separatives: Optional[float] = None
    stationnement_habitation: Optional[float] = None
    coefficient_espaces_verts: Optional[float] = None
    usages_autorises: List[str] = Field(default_factory=list)
    usages_interdits: List[str] = Field(default_factory=list)
    usages_conditionnes: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None

    @field_validator("usages_autorises", "usages_interdits", "usages_conditionnes", mode="before")
    @classmethod
    def _null_list(cls, v):
        return [] if v is None else v


class ExtractionMetrics(BaseModel):
    """Per-call observability record, logged at every terminal state."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    zone: str
    pdf_url: str
    method: MetricsMethod
    duration_ms: float = 0.0
    confidence: float = 0.0
    rules_extracted: int = 0
    errors: List[str] = Field(default_factory=list)
    pdf_size: Optional[int] = None
    cache_hit: bool = False


class BatchReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pdf_url: str
    zones_detected: List[str] = Field(default_factory=list)
    records: List[RuleRecord] = Field(default_factory=list)
    failed_zones: Dict[str, str] = Field(default_factory=dict)

    @computed_field(alias="zoneCount")
    @property
    def zone_count(self) -> int:
        return len(self.records)

    @computed_field(alias="averageConfidence")
    @property
    def average_confidence(self) -> float:
        if not self.records:
            return 0.0
        return round(sum(r.confidence for r in self.records) / len(self.records), 4)

    @computed_field(alias="methods")
    @property
    def methods(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for r in self.records:
            out[r.method] = out.get(r.method, 0) + 1
        return out


def export_json_schema() -> dict:
    """JSON Schema of the wire format of a record (camelCase keys)."""
    return RuleRecord.model_json_schema(by_alias=True, mode="serialization")
