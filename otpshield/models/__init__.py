"""
otpshield/models — shared dataclass schema.
"""
