from __future__ import annotations

import hashlib
import json
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from urllib3.exceptions import ReadTimeoutError

from plu.errors import (
    ExtractionCancelledError,
    GenerativeParseError,
    GenerativeTimeoutError,
    GenerativeUnavailableError,
)
from plu.llm.llm_text_client import LLMTextClient

logger = logging.getLogger(__name__)


def _sha1(s: str) -> str:
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


def _read_timed_out(e: requests.ConnectionError) -> bool:
    # requests re-raises a read timeout hit while streaming as ConnectionError
    return any(isinstance(a, ReadTimeoutError) for a in e.args)


@dataclass
class OllamaTextClient(LLMTextClient):
    model: str = "llama3.2:3b"
    host: str = "http://127.0.0.1:11434"
    temperature: float = 0.1
    num_ctx: int = 8192
    num_predict: int = 1000
    timeout_s: float = 60.0
    max_retries: int = 1
    backoff_base_s: float = 1.2
    backoff_jitter_s: float = 0.4
    enable_cache: bool = False
    cache_dir: Path = field(default_factory=lambda: Path(".cache/ollama_text"))
    session: Optional[requests.Session] = field(default=None, repr=False)

    def __post_init__(self):
        self.host = self.host.rstrip("/")
        if self.enable_cache:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _make_cache_key(
        self,
        prompt: str,
        fmt: Optional[Dict[str, Any]],
        options: Optional[Dict[str, Any]],
    ) -> str:
        key_src = json.dumps(
            {
                "model": self.model,
                "prompt": prompt,
                "format": fmt or None,
                "options": options or None,
            },
            ensure_ascii=False,
            sort_keys=True,
        )
        return _sha1(key_src)

    def _cache_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.txt"

    def generate_raw(
        self,
        prompt: str,
        *,
        json_schema: Optional[Dict[str, Any]] = None,  # passed to Ollama as "format"
        options: Optional[Dict[str, Any]] = None,  # merged into "options"
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """
        Return the concatenated streamed 'response' fragments (a STRING). No parsing here.
        Connection failures are retried with a small backoff; timeouts are not.
        `cancel` is checked between streamed chunks.
        """
        opts = {
            "temperature": self.temperature,
            "num_ctx": self.num_ctx,
            "num_predict": self.num_predict,
        }
        if options:
            opts.update(options)

        if self.enable_cache:
            p = self._cache_path(self._make_cache_key(prompt, json_schema, opts))
            if p.exists():
                return p.read_text(encoding="utf-8")

        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": True,
            "options": opts,
        }
        if json_schema is not None:
            payload["format"] = json_schema

        http = self.session or requests
        timeout = timeout_s or self.timeout_s
        url = f"{self.host}/api/generate"

        for attempt in range(self.max_retries + 1):
            if cancel is not None and cancel.is_set():
                raise ExtractionCancelledError(f"generation on {url} cancelled")
            try:
                with http.post(url, json=payload, timeout=timeout, stream=True) as r:
                    r.raise_for_status()
                    resp = self._read_stream(url, r, time.monotonic() + timeout, cancel)
            except requests.Timeout as e:
                raise GenerativeTimeoutError(
                    f"no answer from {url} within {timeout}s"
                ) from e
            except requests.ConnectionError as e:
                if _read_timed_out(e):
                    raise GenerativeTimeoutError(f"{url} stalled for {timeout}s") from e
                if attempt >= self.max_retries:
                    raise GenerativeUnavailableError(f"cannot reach {url}: {e}") from e
                sleep_s = (self.backoff_base_s**attempt) + random.uniform(
                    0, self.backoff_jitter_s
                )
                logger.warning("ollama unreachable (attempt %d), retrying in %.1fs", attempt + 1, sleep_s)
                time.sleep(min(8.0, sleep_s))
                continue
            except requests.HTTPError as e:
                raise GenerativeUnavailableError(f"{url} answered {e}") from e
            except requests.RequestException as e:
                raise GenerativeUnavailableError(f"request to {url} failed: {e}") from e

            if self.enable_cache:
                key = self._make_cache_key(prompt, json_schema, opts)
                self._cache_path(key).write_text(resp, encoding="utf-8")
            return resp

        raise GenerativeUnavailableError(f"cannot reach {url}")

    @staticmethod
    def _read_stream(
        url: str,
        r: requests.Response,
        deadline: float,
        cancel: Optional[threading.Event],
    ) -> str:
        # NDJSON: one {"response": "...", "done": false} object per line
        parts: List[str] = []
        for line in r.iter_lines():
            if cancel is not None and cancel.is_set():
                raise ExtractionCancelledError(f"generation on {url} cancelled")
            if time.monotonic() > deadline:
                raise GenerativeTimeoutError(f"{url} still generating at the deadline")
            if not line:
                continue
            try:
                data = json.loads(line)
            except ValueError as e:
                raise GenerativeParseError(f"{url} returned a non-JSON body") from e
            if not isinstance(data, dict):
                raise GenerativeParseError(f"{url} returned {type(data).__name__}, expected an object")
            if data.get("error"):
                raise GenerativeUnavailableError(f"{url} reported: {data['error']}")
            parts.append(str(data.get("response") or ""))
            if data.get("done"):
                break
        return "".join(parts)
