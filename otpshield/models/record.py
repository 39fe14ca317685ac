"""
otpshield/models/record.py
Shared dataclass schema. Detectors, scorer, trust stores and the API
layer all use these types. Do not add logic here — data only.
"""

from dataclasses import dataclass, field
from typing import List, Optional


# ── TRUST RECORDS ────────────────────────────────────────────

@dataclass
class SenderTrustRecord:
    """Running trust state for one normalized sender ID."""
    score:                    float       = 70.0
    last_updated:             str         = ''
    message_count:            int         = 0
    recent_risk_samples:      List[float] = field(default_factory=list)  # oldest first, max 10
    avg_message_risk:         float       = 0.5
    user_feedback_score:      float       = 0.5
    interaction_volume_score: float       = 0.1
    response_rate_score:      float       = 0.5
    message_diversity_score:  float       = 0.5


@dataclass
class CallTrustRecord:
    """Running trust state for one normalized phone number."""
    score:                float       = 50.0
    last_updated:         str         = ''
    call_count:           int         = 0
    call_durations:       List[float] = field(default_factory=list)  # seconds, oldest first, max 10
    avg_call_duration:    float       = 0.0
    user_feedback_score:  float       = 0.5
    call_frequency_score: float       = 0.5
    call_response_score:  float       = 0.5


@dataclass
class TrustStatus:
    """One tier of the shared trust taxonomy."""
    key:       str      # PLATINUM / SILVER / SUSPICIOUS / BLACKLISTED
    label:     str
    color:     str
    min_score: float


# ── EVENTS ───────────────────────────────────────────────────

@dataclass
class FeedbackEvent:
    """A single user rating. Append-only."""
    key:            str
    timestamp:      str
    feedback_type:  str        # safe / suspicious / scam
    feedback_score: float
    user_id:        Optional[str] = None


@dataclass
class CallRecord:
    """One observed phone call."""
    id:                str
    phone_number:      str     # normalized
    timestamp:         str     # ISO-8601
    duration:          float   = 0
    direction:         str     = 'incoming'   # incoming / outgoing
    was_answered:      bool    = False
    has_user_feedback: bool    = False


@dataclass
class RateDecision:
    """Feedback limiter verdict."""
    allowed:            bool
    message:            str           = ''
    cooldown_remaining: Optional[int] = None   # days


@dataclass
class RateLimitRejection:
    """Returned instead of a trust record when feedback is on cooldown."""
    message:            str
    cooldown_remaining: Optional[int] = None
    error:              bool          = True


# ── MESSAGE ANALYSIS ─────────────────────────────────────────

@dataclass
class Classification:
    is_phishing:      bool
    confidence:       float
    reason:           str
    matched_keywords: List[str] = field(default_factory=list)


@dataclass
class RiskComponents:
    sender_risk:   float = 0.0
    message_risk:  float = 0.0
    location_risk: float = 0.0


@dataclass
class Location:
    name:       str
    lat:        float
    lng:        float
    is_unusual: bool = False


@dataclass
class AnalysisResult:
    """Output of the message risk engine for one message."""
    message:           str
    timestamp:         str
    otp:               Optional[str]
    is_otp_message:    bool
    device_id:         str
    sender_id:         str
    risk_score:        float                    = 0.0
    is_blocked:        bool                     = False
    analysis:          str                      = ''
    is_trusted_sender: bool                     = False
    risk_components:   Optional[RiskComponents] = None
    classification:    Optional[Classification] = None
    location:          Optional[Location]       = None
    sender_synthesized: bool                    = False   # no header and no caller-supplied ID
