"""Token-bucket rate limiter for inbound HTTP requests.

Buckets refill continuously (in whole tokens) rather than resetting at
fixed window boundaries, so a caller never receives a fresh full quota at
an arbitrary instant.

The limiter fails open: any internal error while deriving the key or
touching a bucket lets the request through and is logged.  A bug in rate
limiting must never turn into an outage; keep it fail-open.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from bucketguard.bucket import Clock
from bucketguard.keys import default_key_generator
from bucketguard.store import CleanupScheduler, KeyedBucketStore

logger = logging.getLogger(__name__)

KeyGenerator = Callable[[Any], str]


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limiter configuration. ``window`` is in milliseconds."""

    requests: int
    window: int
    key_generator: KeyGenerator = default_key_generator
    on_rate_limit: Optional[Callable[[Any, "RateLimitInfo"], None]] = None
    # Accepted for callers that track them; the limiter itself ignores both.
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False

    def __post_init__(self):
        for name in ("requests", "window"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

    @property
    def refill_rate(self) -> float:
        """Tokens per millisecond."""
        return self.requests / self.window


@dataclass
class RateLimitInfo:
    limit: int
    remaining: int
    reset: int
    retry_after: int

    def to_dict(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset,
            "retryAfter": self.retry_after,
        }


@dataclass
class RateLimitResult:
    """Outcome of a single ``limit()`` decision.

    ``reset`` is epoch milliseconds; ``retry_after`` is milliseconds and is
    only set on denial.
    """

    success: bool
    limit: int
    remaining: int
    reset: int
    retry_after: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset,
        }
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        return data


class RateLimiter:
    """Per-key rate limiter backed by its own :class:`KeyedBucketStore`.

    Call :meth:`start` (or use the limiter as a context manager) to run the
    periodic idle-bucket cleanup; :meth:`stop` cancels it.
    """

    def __init__(self, config: RateLimitConfig,
                 store: Optional[KeyedBucketStore] = None,
                 wall_clock: Optional[Callable[[], int]] = None,
                 clock: Optional[Clock] = None):
        self._config = config
        self._wall_clock = wall_clock or epoch_ms
        self._store = store if store is not None else KeyedBucketStore(
            capacity=config.requests,
            refill_rate=config.refill_rate,
            clock=clock,
        )
        self._scheduler = CleanupScheduler(
            self._store, interval=config.window / 1000,
        )

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def store(self) -> KeyedBucketStore:
        return self._store

    @property
    def cleanup_running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start periodic cleanup of idle buckets (interval = window)."""
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()

    def __enter__(self) -> "RateLimiter":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _reset_time(self) -> int:
        return self._wall_clock() + self._config.window

    def limit(self, request: Any) -> RateLimitResult:
        """Consume one token for the request's key and report the decision."""
        cfg = self._config
        try:
            key = cfg.key_generator(request)
            bucket, allowed, tokens = self._store.consume(key, 1)
            remaining = max(0, int(tokens))
            reset = self._reset_time()

            if allowed:
                return RateLimitResult(
                    success=True, limit=cfg.requests,
                    remaining=remaining, reset=reset,
                )

            # Denied means fewer than one token was left at decision time
            retry_after = bucket.token_interval
            logger.warning("Rate limited: key=%s retry_after=%dms",
                           key, retry_after)
        except Exception:
            logger.exception("Rate limiting error, allowing request")
            return RateLimitResult(
                success=True, limit=cfg.requests,
                remaining=cfg.requests, reset=self._reset_time(),
            )

        if cfg.on_rate_limit is not None:
            info = RateLimitInfo(
                limit=cfg.requests, remaining=remaining,
                reset=reset, retry_after=retry_after,
            )
            try:
                cfg.on_rate_limit(request, info)
            except Exception:
                logger.exception("on_rate_limit callback failed")

        return RateLimitResult(
            success=False, limit=cfg.requests, remaining=remaining,
            reset=reset, retry_after=retry_after,
        )

    def check(self, request: Any) -> RateLimitInfo:
        """Report the request's quota without consuming a token."""
        cfg = self._config
        try:
            key = cfg.key_generator(request)
            bucket = self._store.get(key)
            return RateLimitInfo(
                limit=cfg.requests,
                remaining=max(0, int(bucket.get_tokens())),
                reset=self._reset_time(),
                retry_after=bucket.get_time_to_next_token(),
            )
        except Exception:
            logger.exception("Rate limit check error")
            return RateLimitInfo(
                limit=cfg.requests, remaining=cfg.requests,
                reset=self._reset_time(), retry_after=0,
            )
