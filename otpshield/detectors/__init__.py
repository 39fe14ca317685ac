"""
otpshield/detectors — stateless text analysis: OTP extraction and phishing classification.
"""
