from typing import Any

from plu.llm.llm_text_client import LLMTextClient
from plu.llm.mock_text_client import MockTextClient
from plu.llm.ollama_text_client import OllamaTextClient


def create_llm_text_client(provider: str, **kwargs: Any) -> LLMTextClient:
    if provider == "ollama":
        return OllamaTextClient(**kwargs)
    elif provider == "mock":
        return MockTextClient(**kwargs)
    raise ValueError(f"Unknown LLM provider: {provider}. Use 'ollama' or 'mock'.")
