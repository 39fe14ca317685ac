"""
otpshield/store — local persistent key-value store.
"""

from otpshield.store.kv_store import KeyValueStore, StorageError

__all__ = [
    "KeyValueStore",
    "StorageError",
]
