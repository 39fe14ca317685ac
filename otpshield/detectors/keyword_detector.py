"""
otpshield/detectors/keyword_detector.py
Phishing classification — pure Python, zero dependencies, fully offline.
Counts red-flag keywords, URL shorteners and OTP-sharing requests and
turns the count into a 0-1 confidence.

SCORING:
  +1 per keyword hit, +2 for a URL, +3 for a request to share a code.
  confidence = min(matches / 5, 1)
  is_phishing = sender not recognised OR confidence > 0.4
"""

import re
from typing import Iterable, List

from otpshield.models.record import Classification

# ── KEYWORD DICTIONARY ───────────────────────────────────────
# Matched case-insensitively as substrings. Extend freely.

PHISHING_KEYWORDS: List[str] = [
    'urgent', 'click', 'link', 'win', 'click here', 'verify account',
    'account locked', 'suspended', 'unusual activity', 'claim',
    'send your', 'share your', 'send otp', 'share otp',
]

URL_PATTERN = re.compile(r'https?://|www\.|bit\.ly|tinyurl|goo\.gl')
OTP_REQUEST_PATTERN = re.compile(
    r'(?:send|share|provide|give).{1,10}(?:otp|password|code|pin)',
    re.IGNORECASE,
)

URL_WEIGHT         = 2
OTP_REQUEST_WEIGHT = 3
FULL_CONFIDENCE_AT = 5      # matches needed for confidence 1.0
PHISHING_THRESHOLD = 0.4

URL_FLAG         = 'suspicious URL'
OTP_REQUEST_FLAG = 'asking to share OTP'


def classify_message(text: str, trusted_senders: Iterable[str]) -> Classification:
    """
    Classify one message.

    Args:
        text:            raw message body (header included).
        trusted_senders: upper-case sender tokens; a message mentioning any
                         of them counts as coming from a known sender.
    """
    if not text:
        return Classification(
            is_phishing=False, confidence=0.0, reason='Empty message',
        )

    upper = text.upper()
    lower = text.lower()
    has_trusted_sender = any(sender in upper for sender in trusted_senders)

    match_count = 0
    matched: List[str] = []

    for kw in PHISHING_KEYWORDS:
        if kw in lower:
            match_count += 1
            matched.append(kw)

    if URL_PATTERN.search(text):
        match_count += URL_WEIGHT
        matched.append(URL_FLAG)

    if OTP_REQUEST_PATTERN.search(text):
        match_count += OTP_REQUEST_WEIGHT
        matched.append(OTP_REQUEST_FLAG)

    confidence  = min(match_count / FULL_CONFIDENCE_AT, 1.0)
    is_phishing = not has_trusted_sender or confidence > PHISHING_THRESHOLD

    return Classification(
        is_phishing      = is_phishing,
        confidence       = confidence,
        reason           = _reason(is_phishing, has_trusted_sender, matched),
        matched_keywords = matched,
    )


def _reason(is_phishing: bool, has_trusted_sender: bool, matched: List[str]) -> str:
    if not is_phishing:
        reason = 'Message appears legitimate'
        if has_trusted_sender:
            reason += ' and comes from a trusted sender'
        return reason

    reason = '' if has_trusted_sender else 'Unknown sender'
    if matched:
        reason += (' and contains ' if reason else 'Contains ') + ', '.join(matched)
    return reason
