"""
Per-client request throttling.

Each client network address gets a sliding window of recent hit times.
State is per-process; it throttles bursts, it does not enforce ticket
uniqueness. Addresses idle for a full window are forgotten, so memory is
bounded by the clients seen in the last window rather than ever.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window limiter keyed by client address.

    Thread-safe. Every `window_seconds` the next check sweeps out keys
    whose hits have all aged past the window.
    """

    def __init__(self, rpm: int, window_seconds: float = 60, clock: Callable[[], float] = time.time):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + window_seconds

    def __len__(self) -> int:
        """Number of client addresses currently tracked."""
        with self._lock:
            return len(self._hits)

    def check(self, key: str) -> RateLimitResult:
        """Record a hit for `key` if it is under the limit."""
        now = self._clock()
        horizon = now - self._window

        with self._lock:
            if now >= self._next_sweep:
                self._sweep(horizon)
                self._next_sweep = now + self._window

            hits = self._hits.get(key)
            if hits is None:
                self._hits[key] = deque([now])
                return RateLimitResult(allowed=True)

            while hits and hits[0] <= horizon:
                hits.popleft()
            if len(hits) >= self._limit:
                return RateLimitResult(allowed=False, retry_after=max(0.0, hits[0] - horizon))
            hits.append(now)
            return RateLimitResult(allowed=True)

    def _sweep(self, horizon: float) -> None:
        # caller holds the lock
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= horizon]
        for key in idle:
            del self._hits[key]
