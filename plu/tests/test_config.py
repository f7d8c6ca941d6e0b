from pathlib import Path

import pytest
from pydantic import ValidationError

from plu.config import Settings


def test_defaults(monkeypatch):
    for var in ("OLLAMA_URL", "PLU_OLLAMA_URL", "REDIS_URL", "PLU_REDIS_URL", "PLU_CACHE_DB_PATH"):
        monkeypatch.delenv(var, raising=False)
    s = Settings()
    assert s.ollama_url is None
    assert s.redis_url is None
    assert s.acceptance_threshold == 0.6
    assert s.cache_min_confidence == 0.6
    assert s.cache_ttl_s == 30 * 24 * 3600
    assert s.max_parallel_zones == 1


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("OLLAMA_URL", "http://gpu:11434/")
    monkeypatch.setenv("PLU_ACCEPTANCE_THRESHOLD", "0.7")
    monkeypatch.setenv("PLU_CACHE_DB_PATH", "  ")
    s = Settings()
    assert s.ollama_url == "http://gpu:11434"
    assert s.acceptance_threshold == 0.7
    assert s.cache_db_path is None


def test_cache_path_from_string(tmp_path):
    s = Settings(cache_db_path=str(tmp_path / "c.sqlite"))
    assert s.cache_db_path == Path(tmp_path / "c.sqlite")


def test_blank_redis_url_disables_redis():
    assert Settings(redis_url="  ").redis_url is None


def test_threshold_bounds():
    with pytest.raises(ValidationError):
        Settings(acceptance_threshold=1.5)
