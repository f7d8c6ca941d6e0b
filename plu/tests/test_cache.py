from __future__ import annotations

from typing import Dict, Optional

import pytest
import redis

from plu import db
from plu.cache import (
    KEY_PREFIX,
    MemoryCache,
    NullCache,
    RedisCache,
    SqliteCache,
    cache_key,
    create_cache,
)
from plu.config import Settings
from plu.errors import CacheError


class _Clock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


class _FakeRedis:
    def __init__(self, fail: bool = False):
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = fail

    def get(self, key: str) -> Optional[bytes]:
        if self.fail:
            raise redis.ConnectionError("down")
        return self.data.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        if self.fail:
            raise redis.ConnectionError("down")
        self.data[key] = value.encode("utf-8")
        self.ttls[key] = ttl


def test_cache_key_is_stable_and_distinct():
    a = cache_key("https://x/plu.pdf", "UB")
    assert a == cache_key("https://x/plu.pdf", "UB")
    assert a.startswith(KEY_PREFIX)
    assert a != cache_key("https://x/plu.pdf", "UA")
    assert a != cache_key("https://x/plu2.pdf", "UB")


def test_memory_cache_expires():
    clock = _Clock()
    cache = MemoryCache(clock=clock)
    cache.set("k", "v", ttl_s=60)

    assert cache.get("k") == "v"
    clock.t += 59
    assert cache.get("k") == "v"
    clock.t += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_null_cache():
    cache = NullCache()
    cache.set("k", "v", 60)
    assert cache.get("k") is None
    assert cache.enabled is False


def test_redis_cache_roundtrip_and_ttl():
    fake = _FakeRedis()
    cache = RedisCache(client=fake)
    cache.set("k", "é", 3600)

    assert cache.get("k") == "é"
    assert fake.ttls["k"] == 3600
    assert cache.get("missing") is None


def test_redis_errors_become_cache_errors():
    cache = RedisCache(client=_FakeRedis(fail=True))
    with pytest.raises(CacheError):
        cache.get("k")
    with pytest.raises(CacheError):
        cache.set("k", "v", 1)


def test_redis_cache_needs_url_or_client():
    with pytest.raises(ValueError):
        RedisCache()


def test_sqlite_cache(tmp_path):
    cache = SqliteCache(tmp_path / "plu.sqlite")
    cache.set("k", '{"zone": "UB"}', 3600)
    assert cache.get("k") == '{"zone": "UB"}'
    cache.set("k", "v2", 3600)
    assert cache.get("k") == "v2"
    assert cache.get("missing") is None


def test_sqlite_expiry_and_purge(tmp_path):
    path = db.init_db(tmp_path / "plu.sqlite")
    db.cache_put("old", "v", 10, path, now=100.0)
    db.cache_put("new", "v", 10_000, path, now=100.0)

    assert db.cache_get("old", path, now=105.0) == "v"
    assert db.cache_get("old", path, now=110.0) is None
    assert db.cache_purge_expired(path, now=200.0) == 1
    assert db.cache_get("new", path, now=200.0) == "v"


def test_records_table(tmp_path):
    path = db.init_db(tmp_path / "plu.sqlite")
    rows = [
        {"zone": "UB", "method": "deterministic", "confidence": 0.9},
        {"zone": "N", "method": "generative", "confidence": 0.7},
    ]
    assert db.save_records("https://x/plu.pdf", rows, path) == 2
    db.save_records("https://x/plu.pdf", [{"zone": "UB", "method": "generative", "confidence": 0.8}], path)

    stored = db.get_records_for_url("https://x/plu.pdf", path)
    assert [r["zone"] for r in stored] == ["N", "UB"]
    assert stored[1]["method"] == "generative"
    assert db.get_records_for_url("https://other/plu.pdf", path) == []


def test_create_cache_picks_backend(tmp_path):
    assert isinstance(create_cache(Settings(redis_url=None, cache_db_path=None)), NullCache)

    sqlite_cache = create_cache(Settings(redis_url=None, cache_db_path=tmp_path / "c.sqlite"))
    assert isinstance(sqlite_cache, SqliteCache)

    redis_cache = create_cache(Settings(redis_url="redis://localhost:6379/0", cache_db_path=None))
    assert isinstance(redis_cache, RedisCache)
