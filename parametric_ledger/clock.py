"""Clock sources for the ledger components."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC wall time."""
    return datetime.now(timezone.utc)


class ManualClock:
    """
    A clock that only moves when told to.

    Used for deterministic replays of policy windows, e.g. checking a claim
    exactly at a policy's end timestamp.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta: float) -> datetime:
        """Move forward by a timedelta given as keywords (days=, seconds=...)."""
        with self._lock:
            self._now += timedelta(**delta)
            return self._now

    def set(self, when: datetime) -> None:
        with self._lock:
            self._now = when
