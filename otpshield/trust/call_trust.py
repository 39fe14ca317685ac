"""
otpshield/trust/call_trust.py
Running trust score per normalized phone number, driven by observed calls
and rate-limited user feedback.

CALL FORMULA:
  score = 100 * clamp(0.5*user_feedback_score + 0.2*call_frequency_score
                    + 0.2*call_response_score + 0.1*min(avg_call_duration/300, 1), 0, 1)
                                                          rounded to 1 decimal

NOTE ON FREQUENCY SCORE:
  Mean gap between consecutive calls from the number (history only):
    < 1h → 0.2 (spam / harassment pattern)    < 12h → 0.4
    < 72h → 0.8 (normal contact)              else → 0.6
  0 or 1 call → 0.5. Heuristic, not calibrated.

FEEDBACK COOLDOWN:
  One rating per (user, number) every RATING_COOLDOWN_DAYS. A rejected
  rating returns RateLimitRejection and mutates nothing.
"""

from __future__ import annotations

import copy
import logging
import math
import threading
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from otpshield.models.record import (
    CallRecord,
    CallTrustRecord,
    RateDecision,
    RateLimitRejection,
)
from otpshield.store.kv_store import KeyValueStore, StorageError
from otpshield.trust.base import BaseTrustStore, Clock, parse_iso, record_from_dict, utc_now
from otpshield.trust.keys import normalize_phone_number
from otpshield.trust.sender_trust import SenderTrustStore
from otpshield.trust.tiers import NEUTRAL_FEEDBACK, combine

logger = logging.getLogger(__name__)

CALL_TRUST_SCORES_KEY      = 'otpshield:call_trust_scores'
CALL_HISTORY_KEY           = 'otpshield:call_history'
CALL_FEEDBACK_KEY          = 'otpshield:call_feedback'
USER_RATING_TIMESTAMPS_KEY = 'otpshield:user_rating_timestamps'

RATING_COOLDOWN_DAYS   = 30
MAX_CALL_HISTORY       = 100
MAX_DURATIONS          = 10
FALLBACK_TRUST_SCORE   = 50.0
DURATION_SATURATION    = 300    # seconds for duration component = 1

CALL_WEIGHTS = {
    'user_feedback_score':  0.5,
    'call_frequency_score': 0.2,
    'call_response_score':  0.2,
    'duration_score':       0.1,
}

# (upper bound in hours, score); first bound exceeded by the mean gap wins
FREQUENCY_BANDS = [
    (1,  0.2),
    (12, 0.4),
    (72, 0.8),
]
INFREQUENT_SCORE = 0.6


# ── SCORING ──────────────────────────────────────────────────

def calculate_call_score(
    user_feedback_score:  float,
    call_frequency_score: float,
    call_response_score:  float,
    avg_call_duration:    float,
) -> float:
    return combine([
        (CALL_WEIGHTS['user_feedback_score'],  user_feedback_score),
        (CALL_WEIGHTS['call_frequency_score'], call_frequency_score),
        (CALL_WEIGHTS['call_response_score'],  call_response_score),
        (CALL_WEIGHTS['duration_score'],       min(avg_call_duration / DURATION_SATURATION, 1.0)),
    ])


def _score_record(record: CallTrustRecord) -> float:
    return calculate_call_score(
        user_feedback_score  = record.user_feedback_score,
        call_frequency_score = record.call_frequency_score,
        call_response_score  = record.call_response_score,
        avg_call_duration    = record.avg_call_duration,
    )


def call_frequency_score(calls: List[CallRecord]) -> float:
    if len(calls) <= 1:
        return 0.5
    times = sorted(parse_iso(c.timestamp) for c in calls)
    gaps = [
        (later - earlier).total_seconds() / 3600
        for earlier, later in zip(times, times[1:])
    ]
    avg_hours = sum(gaps) / len(gaps)
    for bound, score in FREQUENCY_BANDS:
        if avg_hours < bound:
            return score
    return INFREQUENT_SCORE


def call_response_score(calls: List[CallRecord]) -> float:
    if not calls:
        return 0.5
    return sum(1 for c in calls if c.was_answered) / len(calls)


# ── RATE LIMITER ─────────────────────────────────────────────

class FeedbackRateLimiter:
    """
    Unrated → Rated(timestamp). A rating is allowed when the pair was never
    rated or the last rating is at least cooldown_days old.
    """

    def __init__(
        self,
        kv:            KeyValueStore,
        cooldown_days: int             = RATING_COOLDOWN_DAYS,
        clock:         Optional[Clock] = None,
    ):
        self.kv = kv
        self.cooldown_days = cooldown_days
        self.clock: Clock = clock or utc_now
        self._timestamps: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self) -> None:
        try:
            self._timestamps = dict(self.kv.get_json(USER_RATING_TIMESTAMPS_KEY, {}) or {})
        except StorageError as e:
            logger.error(f"Load failed for {USER_RATING_TIMESTAMPS_KEY} — starting empty: {e}")
            self._timestamps = {}

    @staticmethod
    def rating_key(user_id: str, number: str) -> str:
        return f"{user_id}:{number}"

    def check(self, user_id: Optional[str], number: Optional[str]) -> RateDecision:
        if not user_id or not number:
            return RateDecision(allowed=False, message='Invalid user ID or phone number')

        with self._lock:
            last = self._timestamps.get(self.rating_key(user_id, number))
        if not last:
            return RateDecision(allowed=True)

        days_passed = (self.clock() - parse_iso(last)).total_seconds() / 86400
        if days_passed < self.cooldown_days:
            remaining = math.ceil(self.cooldown_days - days_passed)
            return RateDecision(
                allowed            = False,
                cooldown_remaining = remaining,
                message            = f"You can rate this number again in {remaining} days",
            )
        return RateDecision(allowed=True)

    def record(self, user_id: str, number: str) -> None:
        with self._lock:
            self._timestamps[self.rating_key(user_id, number)] = self.clock().isoformat()
            snapshot = dict(self._timestamps)
        try:
            self.kv.set_json(USER_RATING_TIMESTAMPS_KEY, snapshot)
        except StorageError as e:
            logger.error(f"Persist failed for {USER_RATING_TIMESTAMPS_KEY} — continuing in memory: {e}")


# ── STORE ────────────────────────────────────────────────────

class CallTrustStore(BaseTrustStore):
    """
    Usage:
        calls  = CallTrustStore(kv, sender_store)
        call   = calls.record_call("+1 612-555-0001", duration=95, was_answered=True)
        result = calls.record_user_feedback("16125550001", "scam", user_id="u1")
        if isinstance(result, RateLimitRejection): ...
    """

    RECORDS_KEY  = CALL_TRUST_SCORES_KEY
    FEEDBACK_KEY = CALL_FEEDBACK_KEY
    record_type  = CallTrustRecord

    def __init__(
        self,
        kv:               KeyValueStore,
        sender_store:     SenderTrustStore,
        cooldown_days:    int             = RATING_COOLDOWN_DAYS,
        history_limit:    int             = MAX_CALL_HISTORY,
        default_user_id:  str             = 'default_user',
        clock:            Optional[Clock] = None,
    ):
        super().__init__(kv, clock=clock)
        self.sender_store = sender_store
        self.history_limit = history_limit
        self.default_user_id = default_user_id
        self.limiter = FeedbackRateLimiter(kv, cooldown_days=cooldown_days, clock=self.clock)
        self._history: List[CallRecord] = []

    def normalize(self, raw_id: Any) -> str:
        return normalize_phone_number(raw_id)

    def _load_extra(self) -> None:
        stored = self._read(CALL_HISTORY_KEY, [])
        self._history = [record_from_dict(CallRecord, c) for c in stored][: self.history_limit]
        self.limiter.load()

    def default_record(self, key: str) -> CallTrustRecord:
        """Seed from the sender store's view of the same number."""
        try:
            sender = self.sender_store.get_or_create(key)
        except Exception as e:
            logger.warning(f"Sender lookup failed for {key}, using neutral seed: {e}")
            return CallTrustRecord(score=FALLBACK_TRUST_SCORE)
        return CallTrustRecord(
            score               = sender.score,
            user_feedback_score = (
                sender.user_feedback_score
                if sender.user_feedback_score is not None else NEUTRAL_FEEDBACK
            ),
        )

    def get_call_trust_score(self, phone_number: Any) -> CallTrustRecord:
        return self.get_or_create(phone_number)

    # ── CALLS ─────────────────────────────────────────────────────────────

    def record_call(
        self,
        phone_number: Any,
        duration:     float                          = 0,
        direction:    str                            = 'incoming',
        was_answered: bool                           = False,
        timestamp:    Optional[Union[str, datetime]] = None,
    ) -> CallRecord:
        """Add a call to history, persist, then recompute the number's trust."""
        self._ensure_loaded()
        key = self.normalize(phone_number)
        call = CallRecord(
            id           = uuid.uuid4().hex,
            phone_number = key,
            timestamp    = parse_iso(timestamp).isoformat() if timestamp else self.now_iso(),
            duration     = duration or 0,
            direction    = direction or 'incoming',
            was_answered = bool(was_answered),
        )
        with self._write_lock:
            self._history = ([call] + self._history)[: self.history_limit]
        self._save_history()

        self.recompute_trust(key, call)
        return replace(call)

    def recompute_trust(self, phone_number: Any, call: CallRecord) -> CallTrustRecord:
        key = self.normalize(phone_number)
        with self._locks.hold(key):
            current = self._get_or_create(key)
            number_calls = self._calls_for(key)

            durations = list(current.call_durations)
            if call.duration and call.duration > 0:
                durations.append(call.duration)
            durations = durations[-MAX_DURATIONS:]

            feedback = self._feedback_mean(key)
            updated = replace(
                current,
                last_updated         = self.now_iso(),
                call_count           = current.call_count + 1,
                call_durations       = durations,
                avg_call_duration    = sum(durations) / len(durations) if durations else 0.0,
                call_frequency_score = call_frequency_score(number_calls),
                call_response_score  = call_response_score(number_calls),
                user_feedback_score  = (
                    feedback if feedback is not None else current.user_feedback_score
                ),
            )
            updated.score = _score_record(updated)
            self._put_record(key, updated)

        logger.debug(f"Number {key}: score {current.score} → {updated.score} ({updated.call_count} calls)")
        return copy.deepcopy(updated)

    def get_call_history(self, phone_number: Any = None) -> List[CallRecord]:
        """Newest first. All numbers when phone_number is None."""
        self._ensure_loaded()
        with self._write_lock:
            history = list(self._history)
        if phone_number is None:
            return [replace(c) for c in history]
        key = self.normalize(phone_number)
        return [replace(c) for c in history if c.phone_number == key]

    # ── FEEDBACK ──────────────────────────────────────────────────────────

    def can_user_rate(self, user_id: Optional[str], phone_number: Any) -> RateDecision:
        self._ensure_loaded()
        return self.limiter.check(user_id, self.normalize(phone_number))

    def record_user_feedback(
        self,
        phone_number:  Any,
        feedback_type: str,
        user_id:       Optional[str] = None,
    ) -> Union[CallTrustRecord, RateLimitRejection]:
        key = self.normalize(phone_number)
        user_id = user_id or self.default_user_id
        self._ensure_loaded()

        with self._locks.hold(key):
            decision = self.limiter.check(user_id, key)
            if not decision.allowed:
                logger.warning(f"Feedback for {key} rejected: cooldown {decision.cooldown_remaining}d")
                return RateLimitRejection(
                    message            = decision.message,
                    cooldown_remaining = decision.cooldown_remaining,
                )

            self._add_feedback(key, feedback_type, user_id)
            self.limiter.record(user_id, key)

            current = self._get_or_create(key)
            updated = replace(
                current,
                last_updated        = self.now_iso(),
                user_feedback_score = self._feedback_mean(key),
            )
            updated.score = _score_record(updated)
            self._put_record(key, updated)
            self._mark_feedback(key)

        logger.info(f"Number {key}: feedback '{feedback_type}' → score {updated.score}")
        return copy.deepcopy(updated)

    # ── INTERNAL ──────────────────────────────────────────────────────────

    def _calls_for(self, key: str) -> List[CallRecord]:
        with self._write_lock:
            return [c for c in self._history if c.phone_number == key]

    def _mark_feedback(self, key: str) -> None:
        """Flag the most recent call from key as rated."""
        with self._write_lock:
            for i, call in enumerate(self._history):
                if call.phone_number == key:
                    history = list(self._history)
                    history[i] = replace(call, has_user_feedback=True)
                    self._history = history
                    break
            else:
                return
        self._save_history()

    def _save_history(self) -> bool:
        return self._write(CALL_HISTORY_KEY, lambda: [asdict(c) for c in self._history])
