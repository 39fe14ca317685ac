"""
otpshield/scorer — one-shot message risk scoring.
"""

from otpshield.scorer.message_risk import (
    BLOCK_THRESHOLD,
    MessageRiskEngine,
)

__all__ = [
    "BLOCK_THRESHOLD",
    "MessageRiskEngine",
]
