"""
otpshield — OTP phishing and robocall trust scoring engine.
"""

__version__ = "1.0.0"
