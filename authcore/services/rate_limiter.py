"""Per-client sliding-window rate limiting for the auth routes."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

SWEEP_EVERY = 1024


class InMemoryRateLimiter:
    """Sliding-window per-key limiter for single-node deployments.

    Layered by the HTTP routes per client IP; the per-identity lockout lives
    in the credential store. Keys whose window has emptied are evicted, and
    every ``SWEEP_EVERY`` checks the idle keys of other clients are swept too.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Deque[float]] = {}
        self._longest_window = 0
        self._checks = 0

    def _live_hits(self, key: str, window_seconds: int, now: float) -> Deque[float]:
        hits = self._windows.get(key)
        if hits is None:
            return deque()
        cutoff = now - window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._windows[key]
        return hits

    def _sweep(self, now: float) -> None:
        cutoff = now - self._longest_window
        idle = [key for key, hits in self._windows.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._windows[key]

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            self._longest_window = max(self._longest_window, window_seconds)
            self._checks += 1
            if self._checks % SWEEP_EVERY == 0:
                self._sweep(now)

            hits = self._live_hits(key, window_seconds, now)
            if len(hits) >= limit:
                return False
            hits.append(now)
            self._windows[key] = hits
            return True

    def remaining(self, key: str, limit: int, window_seconds: int) -> int:
        with self._lock:
            return max(0, limit - len(self._live_hits(key, window_seconds, self._clock())))

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)

    def sweep(self) -> None:
        with self._lock:
            self._sweep(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
