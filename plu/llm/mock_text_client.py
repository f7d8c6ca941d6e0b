import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from plu.errors import ExtractionCancelledError
from plu.llm.llm_text_client import LLMTextClient


@dataclass
class MockTextClient(LLMTextClient):
    """Returns a canned reply and remembers the prompts it was given."""

    response: str = "{}"
    prompts: List[str] = field(default_factory=list)

    def generate_raw(
        self,
        prompt: str,
        *,
        json_schema: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        if cancel is not None and cancel.is_set():
            raise ExtractionCancelledError("generation cancelled")
        self.prompts.append(prompt)
        return self.response
