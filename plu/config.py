from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the extraction pipeline.
    Env vars use the PLU_ prefix; OLLAMA_URL / REDIS_URL are accepted as well.
    """

    model_config = SettingsConfigDict(
        env_prefix="PLU_",
        extra="ignore",
        populate_by_name=True,
    )

    # generative fallback (None disables it)
    ollama_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ollama_url", "PLU_OLLAMA_URL", "OLLAMA_URL"),
    )
    ollama_model: str = "llama3.2:3b"
    ollama_num_predict: int = 1000

    # cache (Redis wins over sqlite; neither -> no caching)
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("redis_url", "PLU_REDIS_URL", "REDIS_URL"),
    )
    cache_db_path: Optional[Path] = None
    cache_ttl_s: int = 30 * 24 * 3600

    # thresholds
    acceptance_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    cache_min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)

    # timeouts & limits
    download_timeout_s: float = Field(default=30.0, gt=0)
    generative_timeout_s: float = Field(default=60.0, gt=0)
    max_pdf_bytes: int = 100 * 1024 * 1024
    min_text_chars: int = 500
    min_zone_chars: int = 100
    min_section_chars: int = 200

    # concurrency
    max_parallel_zones: int = Field(default=1, ge=1)
    max_outbound_calls: int = Field(default=2, ge=1)

    log_level: str = "INFO"

    @field_validator("ollama_url", "redis_url", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator("cache_db_path", mode="before")
    @classmethod
    def _coerce_path(cls, v):
        # Accept strings from env and coerce; allow Path passthrough.
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return None
            return Path(s).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v


# Lazy singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
