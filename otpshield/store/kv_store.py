"""
otpshield/store/kv_store.py
Local persistent key-value store — one SQLite table of JSON documents.

SCHEMA DESIGN NOTES:
- kv_store(key TEXT PRIMARY KEY, value TEXT, updated_at TEXT)
- value is a JSON document; each trust store owns a handful of keys
  and always writes its whole map back (read-modify-write)
- WAL journal so the HTTP layer can read while a write is in flight
- ":memory:" is accepted as db_path for throwaway stores

Every failure surfaces as StorageError. Callers decide whether to degrade.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

SCHEMA_VERSION = '1.0'


class StorageError(Exception):
    """Persistence read or write failed."""


class KeyValueStore:
    """
    Thin JSON document store over sqlite3.

    Usage:
        with KeyValueStore(Path("otpshield.db")) as kv:
            kv.set_json("otpshield:trust_scores", {...})
            scores = kv.get_json("otpshield:trust_scores", {})
    """

    def __init__(self, db_path: Union[Path, str] = Path("otpshield.db")):
        self.db_path = db_path if str(db_path) == ':memory:' else Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    # ── LIFECYCLE ─────────────────────────────────────────────────────────

    def open(self) -> "KeyValueStore":
        if self._conn is not None:
            return self
        try:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key         TEXT PRIMARY KEY,
                    value       TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS otpshield_meta (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    opened_at       TEXT NOT NULL,
                    schema_version  TEXT NOT NULL
                );
            """)
            conn.execute(
                "INSERT INTO otpshield_meta (opened_at, schema_version) VALUES (?, ?)",
                (_now_iso(), SCHEMA_VERSION),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open store {self.db_path}: {e}") from e
        self._conn = conn
        logger.info(f"Key-value store opened → {self.db_path}")
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            finally:
                self._conn = None
        logger.info(f"Key-value store closed → {self.db_path}")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "KeyValueStore":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # ── DOCUMENTS ─────────────────────────────────────────────────────────

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decoded document stored under key, or default when absent."""
        with self._lock:
            conn = self._require_conn()
            try:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Read failed for {key}: {e}") from e
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt document under {key}: {e}") from e

    def set_json(self, key: str, value: Any) -> None:
        """Replace the document stored under key."""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot encode document for {key}: {e}") from e
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?,?,?)",
                    (key, payload, _now_iso()),
                )
                conn.commit()
            except sqlite3.Error as e:
                with contextlib.suppress(sqlite3.Error):
                    conn.rollback()
                raise StorageError(f"Write failed for {key}: {e}") from e
        logger.debug(f"Wrote {len(payload)} bytes under {key}")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"Store not open: {self.db_path}")
        return self._conn


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
