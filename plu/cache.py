from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

import redis

from plu import db
from plu.config import Settings
from plu.errors import CacheError

logger = logging.getLogger(__name__)

KEY_PREFIX = "plu:analysis:"


def cache_key(pdf_url: str, zone: str) -> str:
    """Stable key of a (document URL, zone code) pair."""
    basis = json.dumps([pdf_url, zone], ensure_ascii=False)
    return KEY_PREFIX + hashlib.sha256(basis.encode("utf-8")).hexdigest()


class RuleCache:
    """
    Interface: string key/value store with per-entry TTL.
    Backends raise CacheError on I/O failure; callers treat it as a miss.
    """

    enabled: bool = True

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_s: int) -> None:
        raise NotImplementedError


class NullCache(RuleCache):
    """No caching configured."""

    enabled = False

    def get(self, key: str) -> Optional[str]:
        return None

    def set(self, key: str, value: str, ttl_s: int) -> None:
        return None


class MemoryCache(RuleCache):
    """In-process cache, mostly for tests and single CLI runs."""

    def __init__(self, clock=time.time):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_s: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_s)

    def __len__(self) -> int:
        return len(self._data)


class RedisCache(RuleCache):
    """Redis-backed cache (SETEX)."""

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None):
        if client is None:
            if not url:
                raise ValueError("RedisCache needs a url or a client")
            client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=5)
        self.client = client

    def get(self, key: str) -> Optional[str]:
        try:
            data = self.client.get(key)
        except redis.RedisError as e:
            raise CacheError(f"redis get failed: {e}") from e
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return data

    def set(self, key: str, value: str, ttl_s: int) -> None:
        try:
            self.client.setex(key, ttl_s, value)
        except redis.RedisError as e:
            raise CacheError(f"redis set failed: {e}") from e


class SqliteCache(RuleCache):
    """Local persistent cache in the sqlite file of plu.db."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db.init_db(db_path)
        purged = db.cache_purge_expired(self.db_path)
        if purged:
            logger.debug("purged %d expired cache entries from %s", purged, self.db_path)

    def get(self, key: str) -> Optional[str]:
        try:
            return db.cache_get(key, self.db_path)
        except sqlite3.Error as e:
            raise CacheError(f"sqlite get failed: {e}") from e

    def set(self, key: str, value: str, ttl_s: int) -> None:
        try:
            db.cache_put(key, value, ttl_s, self.db_path)
        except sqlite3.Error as e:
            raise CacheError(f"sqlite set failed: {e}") from e


def create_cache(settings: Settings) -> RuleCache:
    """Redis when configured, else sqlite when a path is set, else no cache."""
    if settings.redis_url:
        logger.info("using redis cache")
        return RedisCache(settings.redis_url)
    if settings.cache_db_path:
        logger.info("using sqlite cache at %s", settings.cache_db_path)
        return SqliteCache(settings.cache_db_path)
    logger.info("no cache configured")
    return NullCache()
