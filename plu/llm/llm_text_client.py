import threading
from typing import Any, Dict, Optional  # ---------- text generation interface ----------


class LLMTextClient:
    """
    Interface: implement .generate_raw(prompt, ...) -> str (raw model output, no parsing)
    A set `cancel` event aborts a call in flight with ExtractionCancelledError.
    """

    def generate_raw(
        self,
        prompt: str,
        *,
        json_schema: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        raise NotImplementedError
