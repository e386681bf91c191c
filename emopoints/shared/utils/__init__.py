"""Shared utilities for the emopoints services."""
from .pii import hash_pii, fingerprint_note, configure_pii_salt
from .clock import Clock, SystemClock, ManualClock, ensure_utc
from .locks import KeyedLocks

__all__ = [
    "hash_pii",
    "fingerprint_note",
    "configure_pii_salt",
    "Clock",
    "SystemClock",
    "ManualClock",
    "ensure_utc",
    "KeyedLocks",
]
