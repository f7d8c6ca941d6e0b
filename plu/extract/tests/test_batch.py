from __future__ import annotations

import threading

import pytest

from plu.config import Settings
from plu.errors import DownloadError, ExtractionCancelledError
from plu.extract.batch import MultiZoneExtractor
from plu.extract.orchestrator import ExtractionOptions, ExtractionOrchestrator

URL = "https://example.org/plu/reglement.pdf"


class _StubDownloader:
    def __init__(self):
        self.calls = 0

    def fetch(self, url, *, timeout_s=None, cancel=None) -> bytes:
        self.calls += 1
        return b"%PDF-1.7 stub"


def _runner(text: str, max_workers=None, **settings):
    dl = _StubDownloader()
    orch = ExtractionOrchestrator(
        Settings(ollama_url=None, redis_url=None, cache_db_path=None, **settings),
        downloader=dl,
        text_extractor=lambda data, min_chars: text,
    )
    return MultiZoneExtractor(orch, max_workers=max_workers), dl


def test_every_detected_zone_is_extracted(document_text):
    runner, dl = _runner(document_text)

    records = runner.extract_all_zones(URL)

    assert [r.zone for r in records] == ["UB", "N"]
    assert dl.calls == 1


def test_parallel_run_keeps_document_order(document_text):
    runner, dl = _runner(document_text, max_workers=4)

    report = runner.run(URL)

    assert [r.zone for r in report.records] == ["UB", "N"]
    assert report.zones_detected == ["UB", "N"]
    assert report.zone_count == 2
    assert report.failed_zones == {}
    assert report.methods == {"deterministic": 2}
    assert dl.calls == 1


def test_zone_without_section_is_skipped(document_text):
    # "ZONE AUz" is announced but carries no rules
    runner, _ = _runner(document_text + "\nZONE AUz\n")

    report = runner.run(URL)

    assert [r.zone for r in report.records] == ["UB", "N"]
    assert report.zones_detected == ["UB", "N", "AUz"]
    assert "AUz" in report.failed_zones


def test_document_without_zones():
    runner, _ = _runner("Sommaire du règlement, sans aucun titre de zone.")
    report = runner.run(URL)
    assert report.records == []
    assert report.average_confidence == 0.0


def test_download_failure_is_raised():
    class _Failing(_StubDownloader):
        def fetch(self, url, *, timeout_s=None, cancel=None) -> bytes:
            raise DownloadError("HTTP 500", url=url)

    orch = ExtractionOrchestrator(
        Settings(ollama_url=None, redis_url=None, cache_db_path=None),
        downloader=_Failing(),
    )
    with pytest.raises(DownloadError):
        MultiZoneExtractor(orch).run(URL)


def test_cancellation_stops_the_batch(document_text):
    runner, _ = _runner(document_text)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ExtractionCancelledError):
        runner.run(URL, ExtractionOptions(cancel=cancel))


def test_average_confidence(document_text):
    runner, _ = _runner(document_text)
    report = runner.run(URL)
    expected = round(sum(r.confidence for r in report.records) / 2, 4)
    assert report.average_confidence == expected
