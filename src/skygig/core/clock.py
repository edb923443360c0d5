"""Monotonic clock and identifier generation."""

import itertools
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Wall clock that never goes backwards.

    Timestamps are timezone-aware UTC. If the system clock steps back, the
    last issued timestamp is returned again instead.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def _read(self) -> datetime:
        return datetime.now(timezone.utc)

    def now(self) -> datetime:
        with self._lock:
            current = self._read()
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
            return current


class ManualClock(Clock):
    """Clock advanced explicitly; used by tests and the demo."""

    def __init__(self, start: Optional[datetime] = None):
        super().__init__()
        self._current = start or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def _read(self) -> datetime:
        return self._current

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward by a ``timedelta(**delta)``."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._current = self._current + step
        return self._current


class IdGenerator:
    """Unique identifiers and per-scope append sequences."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sequences: dict[str, itertools.count] = {}

    def new_id(self, prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex}"

    def next_seq(self, scope: str) -> int:
        """Return the next value of a strictly increasing sequence for ``scope``."""
        with self._lock:
            counter = self._sequences.setdefault(scope, itertools.count(1))
            return next(counter)
