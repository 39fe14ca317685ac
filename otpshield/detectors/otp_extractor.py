"""
otpshield/detectors/otp_extractor.py
Pure regex extraction from raw SMS text: OTP codes, sender header IDs,
and callback phone numbers. Stateless, no dependencies.

NOTE ON THE 6-DIGIT FALLBACK:
  When neither trigger-word pattern matches, the first standalone 6-digit
  run is returned. A generic 6-digit number (order ID, amount) in a message
  without trigger words will therefore be captured as an OTP. Known and
  accepted — downstream risk scoring treats it as an OTP message.
"""

import re
from typing import List, Optional, Pattern

# Ordered: first pattern that matches wins.
OTP_PATTERNS: List[Pattern] = [
    # "482910 is your OTP"
    re.compile(
        r'\b([0-9]{4,8})\b.*(?:is|as).*(?:OTP|one.time.password|verification|code)',
        re.IGNORECASE,
    ),
    # "Your verification code: 482910"
    re.compile(
        r'(?:OTP|one.time.password|verification|code).*\b([0-9]{4,8})\b',
        re.IGNORECASE,
    ),
    # Bare 6-digit run
    re.compile(r'\b([0-9]{6})\b'),
]

SENDER_HEADER = re.compile(r'^([A-Z0-9-]+):', re.IGNORECASE)

PHONE_PATTERN = re.compile(
    r'(\+\d{1,3}[-.\s]?)?(\(?\d{3}\)?[-.\s]?)?(\d{3})[-.\s]?(\d{4})'
)


def extract_otp(text: Optional[str]) -> Optional[str]:
    """Return the OTP found in text, or None."""
    if not text:
        return None
    for pattern in OTP_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1)
    return None


def extract_sender_id(text: Optional[str]) -> Optional[str]:
    """
    Sender ID from a "HDFCBK: ..." style header, upper-cased.
    Returns None when the message has no header.
    """
    if not text:
        return None
    match = SENDER_HEADER.match(text)
    if match:
        return match.group(1).upper()
    return None


def extract_phone_number(text: Optional[str]) -> Optional[str]:
    """First phone-number-like run in text, as written. None if absent."""
    if not text:
        return None
    match = PHONE_PATTERN.search(text)
    return match.group(0) if match else None
