"""
Per-caller request throttling for the ledger service.

Authenticated writes are keyed by the caller a token proves; the
unauthenticated escrow sweeps and all reads by client address.
"""

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class Decision:
    allowed: bool
    remaining: int
    retry_after: int = 0  # whole seconds, 0 when allowed


class RateLimiter:
    """
    Sliding-window limiter: at most `limit` hits per key in any
    `window_seconds` span. Thread-safe.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = max(1, limit)
        self.window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> Decision:
        """Record a hit for `key` unless the key is already at its limit."""
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window:
                hits.popleft()

            if len(hits) >= self.limit:
                wait = hits[0] + self.window - now
                return Decision(False, 0, max(1, math.ceil(wait)))

            hits.append(now)
            return Decision(True, self.limit - len(hits))

    def allow(self, key: str) -> bool:
        return self.hit(key).allowed

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
