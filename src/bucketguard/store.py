"""In-memory bucket store with periodic idle-bucket eviction.

Buckets are created lazily on first sight of a key.  A bucket observed at
full capacity has seen no recent consumption and is cheap to recreate, so
cleanup simply drops it.  This bounds memory from one-off callers (e.g.
scanners) at the cost of occasionally discarding a bucket that is about to
be recreated.  It is a heuristic, not an LRU.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from bucketguard.bucket import Clock, TokenBucket, monotonic_ms

logger = logging.getLogger(__name__)


class KeyedBucketStore:
    """Maps keys to :class:`TokenBucket` instances, one bucket per key."""

    def __init__(self, capacity: int, refill_rate: float,
                 clock: Optional[Clock] = None):
        self._capacity = capacity
        self._refill_rate = refill_rate
        self._clock = clock or monotonic_ms
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, key: str) -> bool:
        return key in self._buckets

    def _get_locked(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                capacity=self._capacity,
                refill_rate=self._refill_rate,
                clock=self._clock,
            )
            self._buckets[key] = bucket
        return bucket

    def get(self, key: str) -> TokenBucket:
        """Return the bucket for ``key``, creating a full one if needed."""
        with self._lock:
            return self._get_locked(key)

    def consume(self, key: str, n: int = 1) -> tuple[TokenBucket, bool, float]:
        """Get-or-create the bucket for ``key`` and take ``n`` tokens from it.

        Runs under the store lock, so cleanup cannot evict the bucket between
        lookup and consumption.  Returns ``(bucket, allowed, tokens_left)``.
        """
        with self._lock:
            bucket = self._get_locked(key)
            allowed, tokens = bucket.take(n)
            return bucket, allowed, tokens

    def cleanup(self) -> int:
        """Evict buckets currently at full capacity. Returns count removed."""
        with self._lock:
            snapshot = list(self._buckets.items())

        full = [(key, bucket) for key, bucket in snapshot if bucket.is_full]

        removed = 0
        with self._lock:
            for key, bucket in full:
                # Skip keys replaced or drained since the snapshot was taken
                if self._buckets.get(key) is bucket and bucket.is_full:
                    del self._buckets[key]
                    removed += 1
        if removed:
            logger.debug("Evicted %d idle bucket(s), %d remain",
                         removed, len(self._buckets))
        return removed


class CleanupScheduler:
    """Runs ``store.cleanup()`` every ``interval`` seconds in a daemon thread."""

    def __init__(self, store: KeyedBucketStore, interval: float):
        self._store = store
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="bucket-cleanup",
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._store.cleanup()
            except Exception:
                logger.exception("Bucket cleanup failed")
