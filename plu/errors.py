from __future__ import annotations

from typing import List, Optional


class PluError(Exception):
    """
    Base class for request-level failures of the extraction pipeline.
    Carries enough context for the caller to log and to build a user message.
    """

    def __init__(
        self,
        message: str,
        *,
        zone: Optional[str] = None,
        url: Optional[str] = None,
        attempted_methods: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.zone = zone
        self.url = url
        self.attempted_methods = list(attempted_methods or [])


class DownloadError(PluError):
    """PDF unreachable, non-2xx, oversized."""


class DownloadTimeoutError(DownloadError):
    pass


class TextExtractionError(PluError):
    """PDF bytes did not yield usable text (scanned document, broken file, ...)."""


class ZoneNotFoundError(PluError):
    pass


class GenerativeError(PluError):
    pass


class GenerativeTimeoutError(GenerativeError):
    pass


class GenerativeParseError(GenerativeError):
    pass


class GenerativeUnavailableError(GenerativeError):
    """Endpoint not configured or not reachable."""


class ExtractionFailedError(PluError):
    """Deterministic and generative extraction both failed for a zone."""


class ExtractionCancelledError(PluError):
    pass


class CacheError(PluError):
    """Cache read/write failure. Never fatal for a request."""
