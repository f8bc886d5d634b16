"""
Provider Rate Limiter

Enforces a deterministic minimum spacing between calls to the same
provider. Calls to different providers never wait on each other.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class ProviderRateLimiter:
    """
    Minimum inter-call spacing keyed by provider name.

    Safe to share between threads. The clock and sleep functions are
    injectable so tests can drive the limiter without waiting.
    """

    def __init__(
        self,
        default_interval: float = 0.0,
        intervals: Optional[dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if default_interval < 0:
            raise ValueError("default_interval cannot be negative")
        self._default_interval = default_interval
        self._intervals: dict[str, float] = {}
        self._next_allowed: dict[str, float] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep
        for provider, seconds in (intervals or {}).items():
            self.set_interval(provider, seconds)

    def set_interval(self, provider: str, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"Interval for {provider} cannot be negative")
        with self._registry_lock:
            self._intervals[provider] = seconds

    def interval_for(self, provider: str) -> float:
        return self._intervals.get(provider, self._default_interval)

    def _lock_for(self, provider: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(provider)
            if lock is None:
                lock = self._locks[provider] = threading.Lock()
            return lock

    def wait(self, provider: str) -> float:
        """
        Block until the provider may be called again.

        Returns:
            Seconds spent waiting
        """
        with self._lock_for(provider):
            now = self._clock()
            allowed_at = self._next_allowed.get(provider, now)
            waited = max(0.0, allowed_at - now)
            if waited > 0:
                self._sleep(waited)
            self._next_allowed[provider] = max(now, allowed_at) + self.interval_for(provider)
            return waited
