"""
otpshield/trust/tiers.py
Trust tier taxonomy shared by sender and call stores, plus the
score-combination helpers both weighted formulas go through.
"""

import math
from typing import Dict, Iterable, Tuple

from otpshield.models.record import TrustStatus

# Highest threshold wins. Colors are the badge colors used by the app.
TRUST_STATUS: Dict[str, TrustStatus] = {
    'PLATINUM':    TrustStatus('PLATINUM',    'Trusted (Platinum)', '#06C167', 85),
    'SILVER':      TrustStatus('SILVER',      'Caution (Silver)',   '#F6B000', 65),
    'SUSPICIOUS':  TrustStatus('SUSPICIOUS',  'Suspicious',         '#D6006C', 40),
    'BLACKLISTED': TrustStatus('BLACKLISTED', 'Blacklisted',        '#b21f1f', 0),
}

FEEDBACK_SCORES: Dict[str, float] = {
    'safe':       1.0,
    'suspicious': 0.3,
    'scam':       0.0,
}
NEUTRAL_FEEDBACK = 0.5


def trust_status(score: float) -> TrustStatus:
    for status in TRUST_STATUS.values():
        if score >= status.min_score:
            return status
    return TRUST_STATUS['BLACKLISTED']


def feedback_score(feedback_type: str) -> float:
    """safe → 1.0, suspicious → 0.3, scam → 0.0, anything else → 0.5."""
    return FEEDBACK_SCORES.get(feedback_type, NEUTRAL_FEEDBACK)


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return min(max(value, lo), hi)


def combine(weighted: Iterable[Tuple[float, float]]) -> float:
    """
    (weight, component) pairs → published 0-100 score.
    Components are clamped to [0,1], the sum is clamped to [0,1],
    scaled to 100 and rounded half-up to one decimal.
    """
    total = sum(weight * clamp(component) for weight, component in weighted)
    score = clamp(total) * 100
    return math.floor(score * 10 + 0.5) / 10
