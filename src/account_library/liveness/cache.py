# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Two-threshold gate in front of an expensive refresh.

A ProbeGate combines:
- a minimum call interval, measured from the last *attempted* refresh
  (successful or not), which absorbs callers polling far too fast
- a TTL on the last recorded value, which decides freshness

Each probing context owns its own instance; nothing here is global.
"""

import threading
from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class ProbeGate(Generic[T]):
    """
    Rate limiter plus single-value TTL cache.

    All state sits behind one lock and every method returns immediately,
    so the gate never blocks callers on I/O.
    """

    def __init__(self, min_call_interval: float, cache_ttl: float):
        self.min_call_interval = max(0.0, float(min_call_interval))
        self.cache_ttl = max(0.0, float(cache_ttl))
        self._lock = threading.Lock()
        self._last_attempt: Optional[float] = None
        self._last_value: Optional[T] = None
        self._last_value_at: Optional[float] = None

    def get(self, now: float) -> Tuple[Optional[T], bool]:
        """
        Return the cached value and whether it is still within TTL.

        Returns (None, False) when nothing has been recorded yet.
        """
        with self._lock:
            if self._last_value_at is None:
                return None, False
            fresh = (now - self._last_value_at) < self.cache_ttl
            return self._last_value, fresh

    def should_throttle(self, now: float) -> bool:
        """True if the last attempted refresh is younger than the minimum interval."""
        with self._lock:
            return self._throttled_unlocked(now)

    def try_begin_attempt(self, now: float) -> bool:
        """
        Claim the right to refresh.

        Checks the throttle and records the attempt in one step, so callers
        racing within the same interval trigger a single refresh.

        Returns:
            True if the caller should refresh now, False if throttled
        """
        with self._lock:
            if self._throttled_unlocked(now):
                return False
            self._last_attempt = now
            return True

    def record(self, value: T, now: float) -> float:
        """
        Store a fresh value, always overwriting the previous one.

        The stored timestamp never moves backwards, even if the clock does.

        Returns:
            The timestamp recorded for the value
        """
        with self._lock:
            if self._last_value_at is not None and now < self._last_value_at:
                now = self._last_value_at
            self._last_value = value
            self._last_value_at = now
            return now

    def last_recorded_at(self) -> Optional[float]:
        with self._lock:
            return self._last_value_at

    def reset(self) -> None:
        """Forget the cached value and the last attempt."""
        with self._lock:
            self._last_attempt = None
            self._last_value = None
            self._last_value_at = None

    def _throttled_unlocked(self, now: float) -> bool:
        if self._last_attempt is None:
            return False
        # A clock that stepped backwards must not stall refreshes
        elapsed = now - self._last_attempt
        return 0 <= elapsed < self.min_call_interval
