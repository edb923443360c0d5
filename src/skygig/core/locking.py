"""Per-aggregate lock registry."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class LockRegistry:
    """Hands out one lock per aggregate key.

    Writes to a single aggregate are serialized by holding its lock. Callers
    must never hold two aggregate locks at once.
    """

    def __init__(self, name: str):
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

    def forget(self, key: str) -> None:
        """Drop the lock of a deleted aggregate."""
        with self._guard:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
