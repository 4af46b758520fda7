"""Admission guards: sliding-window rate limiters and a TTL de-duplication cache.

In-process state is per server instance only. Set ``REDIS_URL`` to share the
rate-limit window across instances.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict, deque
from typing import Callable, Deque, Dict, Optional, Protocol

import redis

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class AdmissionPolicy(Protocol):
    def should_admit(self, key: str) -> bool:
        """Record an attempt for ``key`` and report whether it is within the limit."""
        ...


class SlidingWindowRateLimiter:
    """Allows at most ``limit`` attempts per key within a rolling ``window_seconds``."""

    def __init__(self, limit: int, window_seconds: float, clock: Clock = time.monotonic) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def should_admit(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self._window
        with self._lock:
            attempts = self._attempts.setdefault(key, deque())
            while attempts and attempts[0] <= cutoff:
                attempts.popleft()
            if len(attempts) >= self._limit:
                return False
            attempts.append(now)
            self._prune(cutoff)
            return True

    def _prune(self, cutoff: float) -> None:
        stale = [key for key, attempts in self._attempts.items() if not attempts or attempts[-1] <= cutoff]
        for key in stale:
            del self._attempts[key]


class RedisSlidingWindowLimiter:
    """Sliding window kept in a Redis sorted set so every instance shares the count."""

    def __init__(self, client, limit: int, window_seconds: float, prefix: str = "sitecare:ratelimit") -> None:
        self._redis = client
        self._limit = limit
        self._window = window_seconds
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, limit: int, window_seconds: float, prefix: str = "sitecare:ratelimit"):
        return cls(redis.Redis.from_url(url), limit, window_seconds, prefix)

    def should_admit(self, key: str) -> bool:
        redis_key = f"{self._prefix}:{key}"
        now = time.time()
        pipe = self._redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - self._window)
        pipe.zcard(redis_key)
        _, count = pipe.execute()
        if count >= self._limit:
            return False
        pipe = self._redis.pipeline()
        pipe.zadd(redis_key, {uuid.uuid4().hex: now})
        pipe.expire(redis_key, int(self._window) + 1)
        pipe.execute()
        return True


class TTLCache:
    """Remembers keys for ``ttl_seconds``; used to skip webhook events already processed."""

    def __init__(self, ttl_seconds: float, max_entries: int = 10_000, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            expires_at: Optional[float] = self._entries.get(key)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._entries[key]
                return False
            return True

    def add(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = now + self._ttl
            self._entries.move_to_end(key)
            while self._entries:
                oldest_key, oldest_expiry = next(iter(self._entries.items()))
                if oldest_expiry > now and len(self._entries) <= self._max_entries:
                    break
                del self._entries[oldest_key]


def build_rate_limiter(
    limit: int,
    window_seconds: float,
    redis_url: Optional[str] = None,
    prefix: str = "sitecare:ratelimit",
) -> AdmissionPolicy:
    if redis_url:
        logger.info("Using Redis rate limiter for %s", prefix)
        return RedisSlidingWindowLimiter.from_url(redis_url, limit, window_seconds, prefix)
    return SlidingWindowRateLimiter(limit, window_seconds)
