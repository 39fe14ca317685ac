"""
otpshield/trust/keys.py
Key normalization. Every store lookup goes through these — two raw
strings that normalize equal MUST resolve to the same record.

Missing or fully-stripped input maps to the 'unknown' sentinel, written in
each normalizer's own output alphabet so normalize(normalize(x)) holds.
"""

import re
from typing import Any

UNKNOWN_KEY        = 'unknown'
UNKNOWN_SENDER_KEY = UNKNOWN_KEY.upper()

_NON_ALNUM  = re.compile(r'[^a-zA-Z0-9]')
_NON_DIGIT  = re.compile(r'\D')


def normalize_sender_id(sender_id: Any) -> str:
    """'hdfc-bk ' → 'HDFCBK'. Missing → 'UNKNOWN'."""
    if sender_id is None:
        return UNKNOWN_SENDER_KEY
    return _NON_ALNUM.sub('', str(sender_id)).upper() or UNKNOWN_SENDER_KEY


def normalize_phone_number(phone_number: Any) -> str:
    """'+1 (612) 555-0001' → '16125550001'. Missing → 'unknown'."""
    if phone_number is None:
        return UNKNOWN_KEY
    return _NON_DIGIT.sub('', str(phone_number)) or UNKNOWN_KEY


def format_phone_number(number: str) -> str:
    """Display form for US numbers; anything else is returned unchanged."""
    if not number:
        return ''
    cleaned = _NON_DIGIT.sub('', number)
    if len(cleaned) == 10:
        return f"({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:]}"
    if len(cleaned) == 11 and cleaned[0] == '1':
        return f"+1 ({cleaned[1:4]}) {cleaned[4:7]}-{cleaned[7:]}"
    return number
