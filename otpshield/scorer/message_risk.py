"""
otpshield/scorer/message_risk.py
One-shot risk score for a single incoming message.

RISK MODEL (additive, clamped to [0,1]):
  0.2                         base
  + 0.5                       sender not in trusted allowlist
  + classification.confidence * 0.3
  + 0.1                       device location flagged unusual
  is_blocked = risk > 0.5

Messages without an OTP short-circuit to a tagged non-OTP result with
risk 0 and are not kept in history. History is in-memory only.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Iterable, List, Optional

from otpshield.detectors.keyword_detector import classify_message
from otpshield.detectors.otp_extractor import extract_otp, extract_sender_id
from otpshield.models.record import AnalysisResult, RiskComponents
from otpshield.simulation import LocationProvider, RandomLocationProvider, random_sender_id
from otpshield.trust.keys import normalize_sender_id
from otpshield.trust.tiers import clamp

logger = logging.getLogger(__name__)

BASE_RISK            = 0.2
UNTRUSTED_RISK       = 0.5
MESSAGE_RISK_WEIGHT  = 0.3
LOCATION_RISK        = 0.1
BLOCK_THRESHOLD      = 0.5
HISTORY_LIMIT        = 10

NOT_OTP_ANALYSIS = 'Not an OTP message'


class MessageRiskEngine:
    """
    Usage:
        engine = MessageRiskEngine(trusted_senders=["HDFCBK", "SBIBANK"])
        result = engine.analyze_message("HDFCBK: 123456 is your OTP.", device_id="pixel-7")
        result.is_blocked, result.risk_score
    """

    def __init__(
        self,
        trusted_senders:   Iterable[str],
        location_provider: Optional[LocationProvider]  = None,
        sender_factory:    Optional[Callable[[], str]] = None,
        history_limit:     int                         = HISTORY_LIMIT,
        default_device_id: str                         = 'unknown-device',
    ):
        self.trusted_senders: List[str] = [s.upper() for s in trusted_senders]
        self._trusted_keys = {normalize_sender_id(s) for s in self.trusted_senders}
        self.location_provider = location_provider or RandomLocationProvider()
        self.sender_factory = sender_factory or (lambda: random_sender_id(self.trusted_senders))
        self.default_device_id = default_device_id
        self._history: Deque[AnalysisResult] = deque(maxlen=history_limit)
        self._lock = threading.Lock()

    def is_trusted(self, sender_id: str) -> bool:
        return normalize_sender_id(sender_id) in self._trusted_keys

    def analyze_message(
        self,
        message:   Optional[str],
        device_id: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> AnalysisResult:
        message   = message or ''
        device_id = device_id or self.default_device_id
        sender    = extract_sender_id(message) or sender_id
        synthesized = not sender
        if synthesized:
            sender = self.sender_factory()
        timestamp = datetime.now(timezone.utc).isoformat()

        otp = extract_otp(message)
        if not otp:
            return AnalysisResult(
                message        = message,
                timestamp      = timestamp,
                otp            = None,
                is_otp_message = False,
                device_id      = device_id,
                sender_id      = sender,
                sender_synthesized = synthesized,
                risk_score     = 0.0,
                is_blocked     = False,
                analysis       = NOT_OTP_ANALYSIS,
            )

        trusted        = self.is_trusted(sender)
        classification = classify_message(message, self.trusted_senders)
        location       = self.location_provider.locate()

        components = RiskComponents(
            sender_risk   = 0.0 if trusted else UNTRUSTED_RISK,
            message_risk  = classification.confidence * MESSAGE_RISK_WEIGHT,
            location_risk = LOCATION_RISK if location.is_unusual else 0.0,
        )
        risk_score = clamp(
            BASE_RISK + components.sender_risk + components.message_risk + components.location_risk
        )
        is_blocked = risk_score > BLOCK_THRESHOLD

        if not is_blocked:
            analysis = 'OTP verified safe - Trusted sender confirmed'
        elif not trusted:
            analysis = 'OTP blocked - Sender not in trusted database'
        else:
            analysis = 'OTP blocked - Suspicious message content'

        result = AnalysisResult(
            message           = message,
            timestamp         = timestamp,
            otp               = otp,
            is_otp_message    = True,
            device_id         = device_id,
            sender_id         = sender,
            sender_synthesized = synthesized,
            is_trusted_sender = trusted,
            risk_score        = risk_score,
            risk_components   = components,
            classification    = classification,
            location          = location,
            is_blocked        = is_blocked,
            analysis          = analysis,
        )

        with self._lock:
            self._history.appendleft(result)

        logger.debug(
            f"Sender {normalize_sender_id(sender)}: risk={risk_score:.2f} "
            f"blocked={is_blocked} phishing={classification.is_phishing}"
        )
        return result

    def history(self) -> List[AnalysisResult]:
        """Most recent OTP analyses, newest first."""
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
