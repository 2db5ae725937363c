"""Continuous-refill token bucket."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class TokenBucket:
    """Per-key token bucket.

    ``refill_rate`` is in tokens per millisecond and ``clock`` returns
    monotonic milliseconds.  Tokens come back in whole units only:
    ``floor(elapsed * refill_rate)`` per refill, so closely spaced calls
    often add nothing.  ``0 <= tokens <= capacity`` always holds.
    """

    capacity: int
    refill_rate: float
    clock: Clock = field(default=monotonic_ms, repr=False)
    tokens: float = field(init=False)
    last_refill: float = field(init=False)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_refill = self.clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self.clock()
        added = math.floor((now - self.last_refill) * self.refill_rate)
        if added > 0:
            self.tokens = min(float(self.capacity), self.tokens + added)
            self.last_refill = now

    def take(self, n: int = 1) -> tuple[bool, float]:
        """Try to take ``n`` tokens; return the decision and tokens left."""
        with self._lock:
            self._refill()
            if self.tokens >= n:
                self.tokens -= n
                return True, self.tokens
            return False, self.tokens

    def consume(self, n: int = 1) -> bool:
        """Try to take ``n`` tokens. Returns True if allowed."""
        return self.take(n)[0]

    def get_tokens(self) -> float:
        """Refill, then return the current token count."""
        with self._lock:
            self._refill()
            return self.tokens

    @property
    def is_full(self) -> bool:
        return self.get_tokens() >= self.capacity

    @property
    def token_interval(self) -> int:
        """Milliseconds it takes to refill one token."""
        # round() absorbs float noise such as 1 / (100 / 60000) == 600.0000000000001
        return math.ceil(round(1 / self.refill_rate, 6))

    def get_time_to_next_token(self) -> int:
        """Milliseconds until at least one token is available (0 if now)."""
        with self._lock:
            if self.tokens >= 1:
                return 0
            return self.token_interval
