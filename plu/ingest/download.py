from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import requests
from urllib3.exceptions import ReadTimeoutError

from plu.errors import DownloadError, DownloadTimeoutError, ExtractionCancelledError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 10.0
CHUNK_SIZE = 64 * 1024
PDF_MAGIC = b"%PDF"

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; plu-rules/0.1)",
    "Accept": "application/pdf,*/*;q=0.8",
}


def _read_timed_out(e: requests.ConnectionError) -> bool:
    # a read timeout inside iter_content surfaces as ConnectionError
    return any(isinstance(a, ReadTimeoutError) for a in e.args)


@dataclass
class PdfDownloader:
    """
    Streams a regulation PDF into memory with a size cap and a total deadline.
    Unexpected content types and a missing %PDF header only log a warning;
    the text extractor has the final word.
    """

    timeout_s: float = 30.0
    max_bytes: int = 100 * 1024 * 1024
    session: requests.Session = field(default_factory=requests.Session, repr=False)

    def __post_init__(self):
        self.session.headers.update(DEFAULT_HEADERS)

    def fetch(
        self,
        url: str,
        *,
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        timeout = timeout_s or self.timeout_s
        deadline = time.monotonic() + timeout
        logger.info("downloading %s", url)
        try:
            with self.session.get(
                url, stream=True, timeout=(min(CONNECT_TIMEOUT_S, timeout), timeout)
            ) as r:
                r.raise_for_status()
                self._check_headers(url, r)
                data = self._read_body(url, r, deadline, timeout, cancel)
        except requests.Timeout as e:
            raise DownloadTimeoutError(f"timeout after {timeout}s downloading {url}", url=url) from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise DownloadError(f"HTTP {status} for {url}", url=url) from e
        except requests.ConnectionError as e:
            if _read_timed_out(e):
                raise DownloadTimeoutError(f"timeout after {timeout}s downloading {url}", url=url) from e
            raise DownloadError(f"cannot download {url}: {e}", url=url) from e
        except requests.RequestException as e:
            raise DownloadError(f"cannot download {url}: {e}", url=url) from e

        if not data.startswith(PDF_MAGIC):
            logger.warning("%s does not start with %r; trying anyway", url, PDF_MAGIC)
        logger.info("downloaded %s (%d bytes)", url, len(data))
        return data
    def _check_headers(self, url: str, r: requests.Response) -> None:
        content_type = r.headers.get("content-type", "").lower()
        if "pdf" not in content_type:
            logger.warning("unexpected content type %r for %s", content_type, url)
        length = r.headers.get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            raise DownloadError(
                f"PDF too large ({int(length)} bytes > {self.max_bytes})", url=url
            )

    def _read_body(
        self,
        url: str,
        r: requests.Response,
        deadline: float,
        timeout: float,
        cancel: Optional[threading.Event],
    ) -> bytes:
        buf = bytearray()
        for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
            if cancel is not None and cancel.is_set():
                raise ExtractionCancelledError(f"download of {url} cancelled", url=url)
            if time.monotonic() > deadline:
                raise DownloadTimeoutError(
                    f"download of {url} not finished after {timeout}s", url=url
                )
            if not chunk:
                continue
            buf.extend(chunk)
            if len(buf) > self.max_bytes:
                raise DownloadError(f"PDF too large (> {self.max_bytes} bytes)", url=url)
        return bytes(buf)
