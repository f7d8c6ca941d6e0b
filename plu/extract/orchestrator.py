from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from plu.cache import NullCache, RuleCache, cache_key, create_cache
from plu.config import Settings, get_settings
from plu.errors import (
    CacheError,
    ExtractionCancelledError,
    ExtractionFailedError,
    GenerativeError,
    GenerativeParseError,
    PluError,
    ZoneNotFoundError,
)
from plu.extract.extractor import run_deterministic
from plu.extract.generative import GenerativeExtractor
from plu.extract.llm_client_factory import create_generative_extractor
from plu.extract.schema import ExtractionMetrics, RuleRecord
from plu.extract.zone_locator import locate_zone_section, validate_zone_code
from plu.ingest.download import PdfDownloader
from plu.ingest.pdf_text import extract_document_text

logger = logging.getLogger(__name__)

TextExtractor = Callable[[bytes, int], str]


@dataclass
class ExtractionOptions:
    force_refresh: bool = False
    use_generative: bool = True
    timeout_s: Optional[float] = None  # per outbound call; settings defaults otherwise
    cancel: Optional[threading.Event] = None


@dataclass
class ExtractionOutcome:
    record: RuleRecord
    metrics: ExtractionMetrics


def _check_cancel(options: ExtractionOptions, zone: Optional[str], url: str) -> None:
    if options.cancel is not None and options.cancel.is_set():
        raise ExtractionCancelledError("extraction cancelled", zone=zone, url=url)


class ExtractionOrchestrator:
    """
    One zone of one regulation PDF:
    cache -> download -> text -> zone section -> deterministic -> (generative) -> cache.

    The cache and the generative fallback are optional collaborators; without
    them the pipeline runs uncached and deterministic-only.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        cache: Optional[RuleCache] = None,
        generative: Optional[GenerativeExtractor] = None,
        downloader: Optional[PdfDownloader] = None,
        text_extractor: Optional[TextExtractor] = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else NullCache()
        self.generative = generative
        self.downloader = downloader or PdfDownloader(
            timeout_s=self.settings.download_timeout_s,
            max_bytes=self.settings.max_pdf_bytes,
        )
        self.text_extractor = text_extractor or extract_document_text
        # caps simultaneous downloads and model calls across zones
        self._outbound = threading.BoundedSemaphore(self.settings.max_outbound_calls)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ExtractionOrchestrator":
        cfg = settings or get_settings()
        return cls(
            cfg,
            cache=create_cache(cfg),
            generative=create_generative_extractor(cfg),
        )

    # ---------- public API ----------

    def extract_from_pdf(
        self, pdf_url: str, zone: str, options: Optional[ExtractionOptions] = None
    ) -> RuleRecord:
        return self.extract(pdf_url, zone, options).record

    def fetch_text(
        self, pdf_url: str, options: Optional[ExtractionOptions] = None
    ) -> Tuple[str, int]:
        """Download + text layer. Returns (normalized text, pdf size in bytes)."""
        opts = options or ExtractionOptions()
        _check_cancel(opts, None, pdf_url)
        with self._outbound:
            data = self.downloader.fetch(
                pdf_url,
                timeout_s=opts.timeout_s or self.settings.download_timeout_s,
                cancel=opts.cancel,
            )
        _check_cancel(opts, None, pdf_url)
        try:
            text = self.text_extractor(data, self.settings.min_text_chars)
        except PluError as e:
            e.url = e.url or pdf_url
            raise
        return text, len(data)

    def extract(
        self,
        pdf_url: str,
        zone: str,
        options: Optional[ExtractionOptions] = None,
        *,
        document_text: Optional[str] = None,
        pdf_size: Optional[int] = None,
    ) -> ExtractionOutcome:
        """
        Runs the per-zone state machine. `document_text` skips the download
        (multi-zone runs fetch the document once).
        """
        opts = options or ExtractionOptions()
        code = validate_zone_code(zone)
        started = time.perf_counter()
        errors: List[str] = []
        key = cache_key(pdf_url, code)

        if not opts.force_refresh:
            cached = self._cache_get(key, errors)
            if cached is not None:
                metrics = self._metrics(pdf_url, code, "cache", started, cached, errors, pdf_size)
                metrics.cache_hit = True
                self._log_metrics(metrics)
                return ExtractionOutcome(cached, metrics)

        attempted: List[str] = []
        try:
            if document_text is None:
                document_text, pdf_size = self.fetch_text(pdf_url, opts)
            _check_cancel(opts, code, pdf_url)

            section = locate_zone_section(document_text, code, self.settings.min_section_chars)
            if len(section.strip()) < self.settings.min_zone_chars:
                raise ZoneNotFoundError(
                    f"zone {code} not found in document ({len(section.strip())} chars located)",
                    zone=code,
                    url=pdf_url,
                )

            attempted.append("deterministic")
            det = run_deterministic(section, code)
            record = det.record

            weak = record.confidence < self.settings.acceptance_threshold or det.crashed
            if weak and self.generative is not None and opts.use_generative:
                _check_cancel(opts, code, pdf_url)
                attempted.append("generative")
                record = self._run_generative(section, code, pdf_url, det.record, opts, attempted, errors)
            elif weak:
                logger.info(
                    "zone %s: weak deterministic result (%.2f), no generative fallback",
                    code,
                    record.confidence,
                )
        except PluError as e:
            e.zone = e.zone or code
            e.url = e.url or pdf_url
            e.attempted_methods = e.attempted_methods or list(attempted)
            errors.append(str(e))
            metrics = self._metrics(pdf_url, code, "failed", started, None, errors, pdf_size)
            self._log_metrics(metrics)
            raise

        self._cache_put(key, record, errors)
        metrics = self._metrics(pdf_url, code, record.method, started, record, errors, pdf_size)
        self._log_metrics(metrics)
        return ExtractionOutcome(record, metrics)

    # ---------- steps ----------

    def _run_generative(
        self,
        section: str,
        code: str,
        pdf_url: str,
        deterministic: RuleRecord,
        opts: ExtractionOptions,
        attempted: List[str],
        errors: List[str],
    ) -> RuleRecord:
        try:
            with self._outbound:
                record = self.generative.extract(
                    section,
                    code,
                    timeout_s=opts.timeout_s or self.settings.generative_timeout_s,
                    cancel=opts.cancel,
                )
            if not record.has_rules():
                raise GenerativeParseError(f"model reply for zone {code} holds no rules", zone=code)
            return record
        except GenerativeError as e:
            errors.append(f"{type(e).__name__}: {e}")
            if not deterministic.has_rules():
                raise ExtractionFailedError(
                    f"deterministic and generative extraction both failed for zone {code}",
                    zone=code,
                    url=pdf_url,
                    attempted_methods=attempted,
                ) from e
            logger.warning(
                "zone %s: generative fallback failed (%s), keeping deterministic result",
                code,
                e,
            )
            return deterministic

    def _cache_get(self, key: str, errors: List[str]) -> Optional[RuleRecord]:
        if not self.cache.enabled:
            return None
        try:
            raw = self.cache.get(key)
        except CacheError as e:
            logger.warning("cache read failed, continuing without cache: %s", e)
            errors.append(str(e))
            return None
        if raw is None:
            return None
        try:
            return RuleRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("ignoring unreadable cache entry %s (%d errors)", key, e.error_count())
            errors.append("invalid cache entry")
            return None

    def _cache_put(self, key: str, record: RuleRecord, errors: List[str]) -> None:
        if not self.cache.enabled or record.confidence < self.settings.cache_min_confidence:
            return
        try:
            self.cache.set(key, record.to_json(), self.settings.cache_ttl_s)
        except CacheError as e:
            logger.warning("cache write failed, result not cached: %s", e)
            errors.append(str(e))

    # ---------- observability ----------

    @staticmethod
    def _metrics(
        pdf_url: str,
        zone: str,
        method: str,
        started: float,
        record: Optional[RuleRecord],
        errors: List[str],
        pdf_size: Optional[int],
    ) -> ExtractionMetrics:
        return ExtractionMetrics(
            zone=zone,
            pdf_url=pdf_url,
            method=method,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            confidence=record.confidence if record else 0.0,
            rules_extracted=record.rules_count() if record else 0,
            errors=list(errors),
            pdf_size=pdf_size,
        )

    @staticmethod
    def _log_metrics(m: ExtractionMetrics) -> None:
        level = logging.WARNING if m.method == "failed" else logging.INFO
        logger.log(
            level,
            "zone=%s method=%s confidence=%.2f rules=%d duration_ms=%.1f cache_hit=%s errors=%d",
            m.zone,
            m.method,
            m.confidence,
            m.rules_extracted,
            m.duration_ms,
            m.cache_hit,
            len(m.errors),
        )
