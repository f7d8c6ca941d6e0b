from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from plu.config import get_settings

# ---------- connection / schema ----------


def db_path_default() -> Path:
    cfg = get_settings()
    return cfg.cache_db_path or Path(".cache") / "plu.sqlite"


def connect(db_path: Optional[Path] = None) -> sqlite3.Connection:
    db = db_path or db_path_default()
    db.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(str(db), timeout=10.0)
    con.row_factory = sqlite3.Row
    return con


def init_db(db_path: Optional[Path] = None) -> Path:
    con = connect(db_path)
    cur = con.cursor()
    # rule_cache: serialized RuleRecord per (pdf_url, zone) cache key
    cur.execute("""
    CREATE TABLE IF NOT EXISTS rule_cache (
      key         TEXT PRIMARY KEY,
      value       TEXT NOT NULL,
      expires_at  REAL NOT NULL,
      updated_at  TEXT DEFAULT (datetime('now'))
    );
    """)
    # records: one row per (pdf_url, zone), last extraction kept
    cur.execute("""
    CREATE TABLE IF NOT EXISTS records (
      pdf_url     TEXT NOT NULL,
      zone        TEXT NOT NULL,
      method      TEXT NOT NULL,
      confidence  REAL,
      record_json TEXT NOT NULL,
      updated_at  TEXT DEFAULT (datetime('now')),
      PRIMARY KEY (pdf_url, zone)
    );
    """)
    con.commit()
    con.close()
    return db_path or db_path_default()


# ---------- key/value cache ----------


def cache_get(key: str, db_path: Optional[Path] = None, now: Optional[float] = None) -> Optional[str]:
    con = connect(db_path)
    try:
        row = con.execute(
            "SELECT value, expires_at FROM rule_cache WHERE key = ?", (key,)
        ).fetchone()
    finally:
        con.close()
    if row is None or row["expires_at"] <= (time.time() if now is None else now):
        return None
    return row["value"]


def cache_put(
    key: str, value: str, ttl_s: int, db_path: Optional[Path] = None, now: Optional[float] = None
) -> None:
    con = connect(db_path)
    try:
        con.execute(
            """
            INSERT INTO rule_cache (key, value, expires_at, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET
              value=excluded.value,
              expires_at=excluded.expires_at,
              updated_at=datetime('now');
            """,
            (key, value, (time.time() if now is None else now) + ttl_s),
        )
        con.commit()
    finally:
        con.close()


def cache_purge_expired(db_path: Optional[Path] = None, now: Optional[float] = None) -> int:
    con = connect(db_path)
    try:
        cur = con.execute("DELETE FROM rule_cache WHERE expires_at <= ?", (time.time() if now is None else now,))
        con.commit()
        return cur.rowcount
    finally:
        con.close()


# ---------- extracted records ----------


def save_records(pdf_url: str, rows: Iterable[Dict[str, Any]], db_path: Optional[Path] = None) -> int:
    """
    Upsert records (RuleRecord.model_dump(by_alias=True) dicts) for one document.
    Returns the number of rows written.
    """
    con = connect(db_path)
    n = 0
    try:
        for r in rows:
            con.execute(
                """
                INSERT INTO records (pdf_url, zone, method, confidence, record_json, updated_at)
                VALUES (?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(pdf_url, zone) DO UPDATE SET
                  method=excluded.method,
                  confidence=excluded.confidence,
                  record_json=excluded.record_json,
                  updated_at=datetime('now');
                """,
                (
                    pdf_url,
                    r["zone"],
                    r["method"],
                    r.get("confidence"),
                    json.dumps(r, ensure_ascii=False),
                ),
            )
            n += 1
        con.commit()
    finally:
        con.close()
    return n


def get_records_for_url(pdf_url: str, db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    con = connect(db_path)
    try:
        rows = con.execute(
            "SELECT record_json FROM records WHERE pdf_url = ? ORDER BY zone", (pdf_url,)
        ).fetchall()
    finally:
        con.close()
    return [json.loads(r["record_json"]) for r in rows]
