from typing import Any, Optional

from plu.config import Settings
from plu.extract.generative import GenerativeExtractor
from plu.llm.llm_text_client_factory import create_llm_text_client


def create_generative_extractor(
    settings: Settings, provider: str = "ollama", **kwargs: Any
) -> Optional[GenerativeExtractor]:
    """
    Generative fallback built from settings.
    Returns None for 'ollama' when no endpoint is configured (fallback disabled).
    """
    if provider == "ollama":
        if not settings.ollama_url:
            return None
        client = create_llm_text_client(
            "ollama",
            model=settings.ollama_model,
            host=settings.ollama_url,
            num_predict=settings.ollama_num_predict,
            timeout_s=settings.generative_timeout_s,
            **kwargs,
        )
    elif provider == "mock":
        client = create_llm_text_client("mock", **kwargs)
    else:
        raise ValueError(f"Unknown LLM provider: {provider}. Use 'ollama' or 'mock'.")
    return GenerativeExtractor(
        client,
        num_predict=settings.ollama_num_predict,
        default_timeout_s=settings.generative_timeout_s,
    )
