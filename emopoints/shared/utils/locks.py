"""Per-key mutual exclusion.

Each student gets a private re-entrant lock. There is no table-wide lock:
dict.setdefault is atomic, so two threads racing to create the lock for the
same key both end up holding the one that won.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """Lazily created RLock per key."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, threading.RLock())
        return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
