"""
otpshield/trust/sender_trust.py
Running trust score per normalized sender ID (SMS header or number).

SENDER FORMULA:
  score = 100 * clamp(0.40*avg_message_risk + 0.25*user_feedback_score
                    + 0.15*interaction_volume_score + 0.10*response_rate_score
                    + 0.10*message_diversity_score, 0, 1)   rounded to 1 decimal

  avg_message_risk is the mean of the last 10 trust samples, each sample
  being 1 - risk_score of an analyzed message (so 1.0 = safe).

NOTE ON SIMULATED COMPONENTS:
  response_rate_score and message_diversity_score are placeholders until
  real behavioural signals exist. They come from a BehaviourSignals
  strategy; the default hashes the sender key, so values are stable per
  sender and carry no meaning. Swap the strategy, not the formula.

Sender feedback has no cooldown. Call feedback does (see call_trust.py).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, List, Optional

from otpshield.models.record import AnalysisResult, SenderTrustRecord
from otpshield.store.kv_store import KeyValueStore
from otpshield.trust.base import BaseTrustStore, Clock
from otpshield.trust.keys import normalize_sender_id
from otpshield.trust.tiers import NEUTRAL_FEEDBACK, combine

logger = logging.getLogger(__name__)

TRUST_SCORES_KEY   = 'otpshield:trust_scores'
USER_FEEDBACK_KEY  = 'otpshield:user_feedback'

DEFAULT_TRUST_SCORE      = 70.0
MAX_MESSAGES_TO_CONSIDER = 10
VOLUME_SATURATION        = 50     # messages for interaction_volume_score = 1

SENDER_WEIGHTS = {
    'avg_message_risk':         0.40,
    'user_feedback_score':      0.25,
    'interaction_volume_score': 0.15,
    'response_rate_score':      0.10,
    'message_diversity_score':  0.10,
}


# ── BEHAVIOUR SIGNALS ────────────────────────────────────────

class BehaviourSignals(ABC):
    """Source of the response-rate and message-diversity components."""

    @abstractmethod
    def response_rate(self, sender_key: str) -> float:
        ...

    @abstractmethod
    def message_diversity(self, sender_key: str) -> float:
        ...


class HashedBehaviourSignals(BehaviourSignals):
    """
    Deterministic stand-in: response_rate in [0.3, 0.9),
    message_diversity in [0.2, 0.95).
    """

    def response_rate(self, sender_key: str) -> float:
        h = 0
        for ch in sender_key:
            h = _int32(_int32(h) << 5) - h + ord(ch)
        return 0.3 + (abs(h) % 1000) / 1000 * 0.6

    def message_diversity(self, sender_key: str) -> float:
        h = sum(ord(ch) * (i + 1) for i, ch in enumerate(sender_key))
        return 0.2 + (abs(h) % 1000) / 1000 * 0.75


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


# ── SCORING ──────────────────────────────────────────────────

def calculate_sender_score(
    avg_message_risk:         float,
    user_feedback_score:      float,
    interaction_volume_score: float,
    response_rate_score:      float,
    message_diversity_score:  float,
) -> float:
    return combine([
        (SENDER_WEIGHTS['avg_message_risk'],         avg_message_risk),
        (SENDER_WEIGHTS['user_feedback_score'],      user_feedback_score),
        (SENDER_WEIGHTS['interaction_volume_score'], interaction_volume_score),
        (SENDER_WEIGHTS['response_rate_score'],      response_rate_score),
        (SENDER_WEIGHTS['message_diversity_score'],  message_diversity_score),
    ])


def _score_record(record: SenderTrustRecord) -> float:
    return calculate_sender_score(
        avg_message_risk         = record.avg_message_risk,
        user_feedback_score      = record.user_feedback_score,
        interaction_volume_score = record.interaction_volume_score,
        response_rate_score      = record.response_rate_score,
        message_diversity_score  = record.message_diversity_score,
    )


# ── STORE ────────────────────────────────────────────────────

class SenderTrustStore(BaseTrustStore):
    """
    Usage:
        store  = SenderTrustStore(kv)
        record = store.apply_message("HDFCBK", analysis_result)
        record = store.apply_feedback("hdfc-bk", "scam")
    """

    RECORDS_KEY  = TRUST_SCORES_KEY
    FEEDBACK_KEY = USER_FEEDBACK_KEY
    record_type  = SenderTrustRecord

    def __init__(
        self,
        kv:      KeyValueStore,
        signals: Optional[BehaviourSignals] = None,
        clock:   Optional[Clock]            = None,
    ):
        super().__init__(kv, clock=clock)
        self.signals = signals or HashedBehaviourSignals()

    def normalize(self, raw_id: Any) -> str:
        return normalize_sender_id(raw_id)

    def default_record(self, key: str) -> SenderTrustRecord:
        return SenderTrustRecord(
            score                    = DEFAULT_TRUST_SCORE,
            message_count            = 0,
            recent_risk_samples      = [],
            avg_message_risk         = 0.5,
            user_feedback_score      = NEUTRAL_FEEDBACK,
            interaction_volume_score = 0.1,
            response_rate_score      = 0.5,
            message_diversity_score  = 0.5,
        )

    def get_trust_score(self, sender_id: Any) -> SenderTrustRecord:
        return self.get_or_create(sender_id)

    def apply_message(
        self,
        sender_id: Any,
        analysis:  Optional[AnalysisResult],
    ) -> SenderTrustRecord:
        """Fold one analyzed message into the sender's running score."""
        key = self.normalize(sender_id)
        risk = getattr(analysis, 'risk_score', None)
        sample = 1 - risk if risk is not None else 0.5

        with self._locks.hold(key):
            current = self._get_or_create(key)

            message_count = current.message_count + 1
            samples: List[float] = (current.recent_risk_samples + [sample])[-MAX_MESSAGES_TO_CONSIDER:]

            feedback = self._feedback_mean(key)
            updated = replace(
                current,
                last_updated             = self.now_iso(),
                message_count            = message_count,
                recent_risk_samples      = samples,
                avg_message_risk         = sum(samples) / len(samples),
                interaction_volume_score = min(message_count / VOLUME_SATURATION, 1.0),
                response_rate_score      = self.signals.response_rate(key),
                message_diversity_score  = self.signals.message_diversity(key),
                user_feedback_score      = (
                    feedback if feedback is not None else current.user_feedback_score
                ),
            )
            updated.score = _score_record(updated)
            self._put_record(key, updated)

        logger.debug(f"Sender {key}: score {current.score} → {updated.score} ({message_count} msgs)")
        return replace(updated, recent_risk_samples=list(updated.recent_risk_samples))

    def apply_feedback(
        self,
        sender_id:     Any,
        feedback_type: str,
        user_id:       Optional[str] = None,
    ) -> SenderTrustRecord:
        """Record a user rating and recombine. No cooldown on this path."""
        key = self.normalize(sender_id)
        with self._locks.hold(key):
            current = self._get_or_create(key)
            self._add_feedback(key, feedback_type, user_id)
            updated = replace(
                current,
                last_updated        = self.now_iso(),
                user_feedback_score = self._feedback_mean(key),
            )
            updated.score = _score_record(updated)
            self._put_record(key, updated)

        logger.info(f"Sender {key}: feedback '{feedback_type}' → score {updated.score}")
        return replace(updated, recent_risk_samples=list(updated.recent_risk_samples))
