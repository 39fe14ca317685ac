"""
otpshield/trust/base.py
Shared machinery for the sender and call trust stores.

One lazy lookup-or-create path (get_or_create) parameterized by each
store's default_record(), append-only feedback events, and persistence
that degrades to the in-memory cache when the key-value store fails.

CONCURRENCY:
  Every mutation is load-or-create → compute → persist on one key.
  Mutations of the same normalized key are serialized with a per-key
  re-entrant lock. Serializing a whole map for persistence happens under a
  store-wide write lock so concurrent writers on different keys never
  observe a map mid-update.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from otpshield.models.record import FeedbackEvent
from otpshield.store.kv_store import KeyValueStore, StorageError
from otpshield.trust.tiers import feedback_score

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso(value: Any) -> datetime:
    """ISO string or datetime → timezone-aware datetime (naive = UTC)."""
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def record_from_dict(cls, data: Dict[str, Any]):
    """Build a dataclass from a stored dict, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in known})


class KeyedLock:
    """One re-entrant lock per key, created on demand."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield


class BaseTrustStore:
    """
    Subclasses set RECORDS_KEY, FEEDBACK_KEY and record_type and implement
    normalize() and default_record().
    """

    RECORDS_KEY:  str = ''
    FEEDBACK_KEY: str = ''
    record_type:  type = object

    def __init__(self, kv: KeyValueStore, clock: Optional[Clock] = None):
        self.kv = kv
        self.clock: Clock = clock or utc_now
        self._records:  Dict[str, Any] = {}
        self._feedback: Dict[str, List[FeedbackEvent]] = {}
        self._locks = KeyedLock()
        self._write_lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._loaded = False

    # ── HOOKS ─────────────────────────────────────────────────────────────

    def normalize(self, raw_id: Any) -> str:
        raise NotImplementedError

    def default_record(self, key: str):
        raise NotImplementedError

    def _load_extra(self) -> None:
        """Subclasses load any additional documents here."""

    # ── LIFECYCLE ─────────────────────────────────────────────────────────

    def open(self) -> "BaseTrustStore":
        """Load cached maps from the key-value store. Safe to call twice."""
        with self._load_lock:
            if self._loaded:
                return self
            stored = self._read(self.RECORDS_KEY, {})
            self._records = {
                key: record_from_dict(self.record_type, data)
                for key, data in stored.items()
            }
            stored_fb = self._read(self.FEEDBACK_KEY, {})
            self._feedback = {
                key: [record_from_dict(FeedbackEvent, e) for e in events]
                for key, events in stored_fb.items()
            }
            self._load_extra()
            self._loaded = True
        logger.info(
            f"{type(self).__name__} loaded: {len(self._records)} records, "
            f"{len(self._feedback)} feedback keys"
        )
        return self

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.open()

    def now_iso(self) -> str:
        return self.clock().isoformat()

    # ── LOOKUP ────────────────────────────────────────────────────────────

    def get_or_create(self, raw_id: Any):
        """Snapshot of the record for raw_id, creating the default if absent."""
        key = self.normalize(raw_id)
        with self._locks.hold(key):
            return copy.deepcopy(self._get_or_create(key))

    def _get_or_create(self, key: str):
        """Live cached record. Caller holds the key lock."""
        self._ensure_loaded()
        record = self._records.get(key)
        if record is None:
            record = self.default_record(key)
            record.last_updated = self.now_iso()
            self._put_record(key, record)
            logger.debug(f"{type(self).__name__}: created record {key}")
        return record

    def _put_record(self, key: str, record) -> None:
        """
        Install a new record object and persist. Records are replaced, never
        mutated in place, so a concurrent save never sees a half-updated one.
        """
        with self._write_lock:
            self._records[key] = record
        self._save_records()

    def known_keys(self) -> List[str]:
        self._ensure_loaded()
        return sorted(self._records)

    # ── FEEDBACK ──────────────────────────────────────────────────────────

    def _add_feedback(self, key: str, feedback_type: str,
                      user_id: Optional[str] = None) -> FeedbackEvent:
        """Append one event and persist the feedback map. Caller holds the key lock."""
        event = FeedbackEvent(
            key            = key,
            timestamp      = self.now_iso(),
            feedback_type  = feedback_type,
            feedback_score = feedback_score(feedback_type),
            user_id        = user_id,
        )
        with self._write_lock:
            self._feedback[key] = self._feedback.get(key, []) + [event]
        self._save_feedback()
        return event

    def _feedback_mean(self, key: str) -> Optional[float]:
        """Mean of all stored feedback for key, or None if nobody rated it."""
        events = self._feedback.get(key)
        if not events:
            return None
        return sum(e.feedback_score for e in events) / len(events)

    def get_feedback(self, raw_id: Any) -> List[FeedbackEvent]:
        key = self.normalize(raw_id)
        self._ensure_loaded()
        with self._locks.hold(key):
            return copy.deepcopy(self._feedback.get(key, []))

    # ── PERSISTENCE ───────────────────────────────────────────────────────

    def _save_records(self) -> bool:
        return self._write(
            self.RECORDS_KEY,
            lambda: {k: asdict(r) for k, r in self._records.items()},
        )

    def _save_feedback(self) -> bool:
        return self._write(
            self.FEEDBACK_KEY,
            lambda: {k: [asdict(e) for e in events] for k, events in self._feedback.items()},
        )

    def _write(self, doc_key: str, build: Callable[[], Any]) -> bool:
        """
        Persist one document. On StorageError the in-memory cache stays
        authoritative and the failure is logged, never raised.
        """
        with self._write_lock:
            payload = build()
            try:
                self.kv.set_json(doc_key, payload)
                return True
            except StorageError as e:
                logger.error(f"Persist failed for {doc_key} — continuing in memory: {e}")
                return False

    def _read(self, doc_key: str, default: Any) -> Any:
        try:
            value = self.kv.get_json(doc_key, default)
        except StorageError as e:
            logger.error(f"Load failed for {doc_key} — starting empty: {e}")
            return default
        return value if value is not None else default
