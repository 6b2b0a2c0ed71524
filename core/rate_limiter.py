# core/rate_limiter.py
"""
Per-client submission throttling

A counter keyed by a hash of the caller's address. The first hit opens a
window; later hits inside the window only increment. Denied attempts still
count, so hammering the endpoint never reopens the window early.

The in-memory store is per process. Deployments running several workers
that must share limits should plug in RedisCounterStore.
"""

import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis

from core.exceptions import ThrottledError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_WINDOW_SECONDS = 300
KEY_PREFIX = "contact:"


class CounterStore(ABC):
    """Keyed counter with a time-to-live"""

    @abstractmethod
    def increment(self, key: str, ttl: int) -> int:
        """
        Atomically bump the counter for key

        A missing or expired counter starts over at 1 with a fresh window of
        ttl seconds. An active counter keeps its original expiry.

        Returns:
            Count after the increment
        """
        raise NotImplementedError

    @abstractmethod
    def purge(self) -> int:
        """Drop every counter, returning how many were removed"""
        raise NotImplementedError


class InMemoryCounterStore(CounterStore):
    """Single-process store; a lock serializes read-modify-write"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, ttl: int) -> int:
        with self._lock:
            now = self._clock()
            count, expiry = self._counters.get(key, (0, 0.0))
            if count == 0 or expiry <= now:
                count, expiry = 0, now + ttl
            count += 1
            self._counters[key] = (count, expiry)
            self._sweep(now)
            return count

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, expiry) in self._counters.items() if expiry <= now]
        for k in expired:
            del self._counters[k]

    def purge(self) -> int:
        with self._lock:
            removed = len(self._counters)
            self._counters.clear()
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)


class RedisCounterStore(CounterStore):
    """
    Shared store for multi-worker deployments

    The key is created with its TTL and incremented inside one MULTI/EXEC
    transaction, so a counter can never exist without an expiry. SET NX
    leaves the TTL of an active window untouched.
    """

    def __init__(self, client: redis.Redis, namespace: str = "contact_relay:rate_limit:"):
        self.client = client
        self.namespace = namespace

    def increment(self, key: str, ttl: int) -> int:
        redis_key = f"{self.namespace}{key}"
        pipe = self.client.pipeline(transaction=True)
        pipe.set(redis_key, 0, ex=ttl, nx=True)
        pipe.incr(redis_key)
        _, count = pipe.execute()
        return int(count)

    def purge(self) -> int:
        keys = list(self.client.scan_iter(match=f"{self.namespace}*"))
        if not keys:
            return 0
        return int(self.client.delete(*keys))


class RateLimiter:
    """
    Fixed-window gate in front of the delivery pipeline

    Fails open: when the counter store is unreachable the attempt is logged
    and allowed.
    """

    def __init__(self, store: Optional[CounterStore] = None, limit: int = DEFAULT_LIMIT,
                 window_seconds: int = DEFAULT_WINDOW_SECONDS):
        self.store = store if store is not None else InMemoryCounterStore()
        self.limit = limit
        self.window_seconds = window_seconds

    @staticmethod
    def key_for(identifier: str) -> str:
        digest = hashlib.sha256((identifier or "unknown").encode("utf-8")).hexdigest()
        return f"{KEY_PREFIX}{digest}"

    def _count(self, key: str) -> Optional[int]:
        try:
            return self.store.increment(key, self.window_seconds)
        except redis.RedisError as e:
            # Allow request if rate limiting fails
            logger.error(f"Rate limit check failed: {e.__class__.__name__}: {e}")
            return None

    def allow(self, identifier: str) -> bool:
        """Count one attempt and report whether it fits in the window"""
        count = self._count(self.key_for(identifier))
        return count is None or count <= self.limit

    def hit(self, identifier: str) -> None:
        """
        Count one attempt

        Raises:
            ThrottledError: If the caller is over the limit for this window
        """
        key = self.key_for(identifier)
        count = self._count(key)
        if count is not None and count > self.limit:
            logger.warning(f"Submission throttled for {key[len(KEY_PREFIX):][:12]} ({count} in window)")
            raise ThrottledError(f"{count} attempts within {self.window_seconds}s")

    def purge(self) -> int:
        removed = self.store.purge()
        logger.info(f"Purged {removed} rate limit counters")
        return removed
