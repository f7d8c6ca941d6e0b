from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
import requests

from plu.errors import DownloadError, DownloadTimeoutError, ExtractionCancelledError
from plu.ingest.download import PdfDownloader

URL = "https://example.org/plu.pdf"


class _FakeResponse:
    def __init__(self, chunks: List[bytes], status: int = 200, headers: Optional[Dict[str, str]] = None):
        self.chunks = chunks
        self.status_code = status
        self.headers = headers if headers is not None else {"content-type": "application/pdf"}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def iter_content(self, chunk_size=1):
        yield from self.chunks


class _FakeSession:
    def __init__(self, response=None, error: Optional[Exception] = None):
        self.headers: Dict[str, str] = {}
        self.response = response
        self.error = error
        self.last_timeout = None

    def get(self, url, stream=False, timeout=None):
        self.last_timeout = timeout
        if self.error is not None:
            raise self.error
        return self.response


def test_fetch_returns_body_and_sets_headers():
    session = _FakeSession(_FakeResponse([b"%PDF-1.7\n", b"body"]))
    dl = PdfDownloader(timeout_s=12.0, session=session)

    assert dl.fetch(URL) == b"%PDF-1.7\nbody"
    assert "User-Agent" in session.headers
    assert session.last_timeout == (10.0, 12.0)


def test_explicit_timeout():
    session = _FakeSession(_FakeResponse([b"%PDF"]))
    PdfDownloader(session=session).fetch(URL, timeout_s=5.0)
    assert session.last_timeout == (5.0, 5.0)


def test_non_pdf_body_is_returned_with_a_warning():
    session = _FakeSession(_FakeResponse([b"<html>"], headers={"content-type": "text/html"}))
    assert PdfDownloader(session=session).fetch(URL) == b"<html>"


def test_http_error():
    session = _FakeSession(_FakeResponse([], status=404))
    with pytest.raises(DownloadError) as exc:
        PdfDownloader(session=session).fetch(URL)
    assert "404" in str(exc.value)
    assert exc.value.url == URL


def test_timeout():
    session = _FakeSession(error=requests.ReadTimeout("slow"))
    with pytest.raises(DownloadTimeoutError):
        PdfDownloader(session=session).fetch(URL)


def test_connection_error():
    session = _FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(DownloadError):
        PdfDownloader(session=session).fetch(URL)


def test_declared_length_over_limit():
    resp = _FakeResponse(
        [b"%PDF"], headers={"content-type": "application/pdf", "content-length": "2048"}
    )
    with pytest.raises(DownloadError):
        PdfDownloader(max_bytes=1024, session=_FakeSession(resp)).fetch(URL)


def test_streamed_body_over_limit():
    resp = _FakeResponse([b"%PDF" + b"x" * 600, b"x" * 600])
    with pytest.raises(DownloadError):
        PdfDownloader(max_bytes=1024, session=_FakeSession(resp)).fetch(URL)


def test_cancelled_download():
    cancel = threading.Event()
    cancel.set()
    session = _FakeSession(_FakeResponse([b"%PDF", b"more"]))
    with pytest.raises(ExtractionCancelledError):
        PdfDownloader(session=session).fetch(URL, cancel=cancel)


def test_slow_body_hits_the_total_deadline(monkeypatch):
    import plu.ingest.download as download

    ticks = iter([0.0, 20.0, 40.0, 60.0])
    monkeypatch.setattr(download, "time", SimpleNamespace(monotonic=lambda: next(ticks)))
    session = _FakeSession(_FakeResponse([b"%PDF", b"more", b"more"]))

    with pytest.raises(DownloadTimeoutError) as exc:
        PdfDownloader(timeout_s=30.0, session=session).fetch(URL)
    assert exc.value.url == URL


class _StallingHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "application/pdf")
        self.send_header("Content-Length", "4096")
        self.end_headers()
        self.wfile.write(b"%PDF-1.7\n")
        self.wfile.flush()
        time.sleep(1.5)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def stalling_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _StallingHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/plu.pdf"
    server.shutdown()
    server.server_close()


def test_stalled_body_is_a_timeout(stalling_server):
    with pytest.raises(DownloadTimeoutError):
        PdfDownloader(timeout_s=0.3).fetch(stalling_server)
