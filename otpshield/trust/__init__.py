"""
otpshield/trust — persistent sender and call trust stores.
"""

from otpshield.trust.call_trust import CallTrustStore, FeedbackRateLimiter
from otpshield.trust.sender_trust import SenderTrustStore
from otpshield.trust.tiers import TRUST_STATUS, trust_status

__all__ = [
    "CallTrustStore",
    "FeedbackRateLimiter",
    "SenderTrustStore",
    "TRUST_STATUS",
    "trust_status",
]
