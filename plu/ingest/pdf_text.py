from __future__ import annotations

import logging
import re
from collections import Counter
from typing import List

import fitz  # PyMuPDF

from plu.errors import TextExtractionError
from plu.extract.textnorm import normalize_document_text

logger = logging.getLogger(__name__)

MIN_TEXT_CHARS = 500
HEADER_FOOTER_FREQ_THRESHOLD = 0.6  # a line seen on >60% of pages at top/bottom is a running header/footer
_EDGE_LINES = 2
_RE_DIGITS = re.compile(r"\d+")


class PDFLoader:
    """Light wrapper around PyMuPDF, opened from bytes."""

    def __init__(self, data: bytes):
        self.doc = fitz.open(stream=data, filetype="pdf")

    def __enter__(self) -> "PDFLoader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.doc.close()

    def page_count(self) -> int:
        return len(self.doc)

    def needs_password(self) -> bool:
        return bool(self.doc.needs_pass)

    def page_text(self, i: int) -> str:
        return self.doc[i].get_text("text")

    def page_texts(self) -> List[str]:
        return [self.page_text(i) for i in range(self.page_count())]


def _line_key(line: str) -> str:
    # "Page 3 / 40" and "Page 4 / 40" are the same running line
    return _RE_DIGITS.sub("#", " ".join(line.split()))


def strip_running_lines(pages: List[str], threshold: float = HEADER_FOOTER_FREQ_THRESHOLD) -> List[str]:
    """
    Drop header/footer lines repeated at the top or bottom of most pages.
    Documents with fewer than 3 pages are returned unchanged.
    """
    if len(pages) < 3:
        return pages
    counts: Counter = Counter()
    split_pages = []
    for text in pages:
        lines = [ln for ln in text.splitlines() if ln.strip()]
        split_pages.append(lines)
        edge = set(lines[:_EDGE_LINES] + lines[-_EDGE_LINES:])
        counts.update({_line_key(ln) for ln in edge})

    running = {k for k, n in counts.items() if n / len(pages) > threshold}
    if not running:
        return pages
    out = []
    for lines in split_pages:
        if len(lines) <= 2 * _EDGE_LINES:
            kept = [ln for ln in lines if _line_key(ln) not in running]
        else:
            head = [ln for ln in lines[:_EDGE_LINES] if _line_key(ln) not in running]
            tail = [ln for ln in lines[-_EDGE_LINES:] if _line_key(ln) not in running]
            kept = head + lines[_EDGE_LINES:-_EDGE_LINES] + tail
        out.append("\n".join(kept))
    return out


def extract_document_text(data: bytes, min_chars: int = MIN_TEXT_CHARS) -> str:
    """
    Text layer of a PDF, normalized, line structure kept.
    Raises TextExtractionError for unreadable, encrypted or text-less documents.
    """
    try:
        with PDFLoader(data) as loader:
            if loader.needs_password():
                raise TextExtractionError("PDF is password protected")
            pages = loader.page_texts()
    except (RuntimeError, ValueError) as e:
        raise TextExtractionError(f"cannot read PDF: {e}") from e

    text = normalize_document_text("\n".join(strip_running_lines(pages)))
    logger.info("extracted %d chars from %d pages", len(text), len(pages))
    if len(text) < min_chars:
        raise TextExtractionError(
            f"PDF text too short ({len(text)} chars < {min_chars}); "
            "the document is probably scanned without a text layer"
        )
    return text
