"""Tiered fixed-window rate limiting.

Each ``(actor_key, tier)`` pair owns an independent counter. A counter is
reset to 1 with a fresh window as soon as ``now`` passes its reset time and
is incremented otherwise; a request is allowed while ``count <= max``.

Counters live behind :class:`RateCounterStore`. The in-memory store is only
correct when one process sees every request for a key; the Redis store keeps
the same algorithm with shared, atomically incremented counters.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Final, Protocol

import redis
from starlette.requests import Request

from gallery_trust.core.errors import RateLimitedError
from gallery_trust.core.settings import settings
from gallery_trust.services.activity import client_ip

logger = logging.getLogger(__name__)

HEALTH_CHECK_PATHS: Final[frozenset[str]] = frozenset(
    {"/health", "/api/health", "/api/v1/system/health"}
)


class RateLimitTier(str, Enum):
    """Named rate-limit configurations applied to classes of endpoints."""

    GENERAL = "GENERAL"
    PUBLIC = "PUBLIC"
    AUTH = "AUTH"
    UPLOAD = "UPLOAD"
    MESSAGE = "MESSAGE"


@dataclass(frozen=True)
class TierConfig:
    """Maximum requests allowed per window."""

    max_requests: int
    window_seconds: int


@dataclass
class RateCounter:
    """Fixed-window counter for one actor and tier."""

    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single admission check."""

    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None = None

    @property
    def headers(self) -> dict[str, str]:
        """Return the rate-limit response headers for this result."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


def actor_key(user_id: str | None, ip_address: str) -> str:
    """Return the rate-limit key for an authenticated user or an address."""
    if user_id:
        return f"user:{user_id}"
    return f"ip:{ip_address}"


def request_actor_key(request: Request, user_id: str | None = None) -> str:
    """Return the rate-limit key for ``request``."""
    return actor_key(user_id, client_ip(request))


def default_tiers() -> dict[RateLimitTier, TierConfig]:
    """Build tier configuration from settings."""
    return {
        RateLimitTier(name): TierConfig(max_requests=limit, window_seconds=window)
        for name, (limit, window) in settings.rate_limit_tiers.items()
    }


class RateCounterStore(Protocol):
    """Storage backend for fixed-window counters."""

    def hit(self, key: str, window_seconds: int, now: float) -> RateCounter:
        """Apply one check-and-increment to ``key`` and return the new counter."""

    def sweep(self, now: float) -> int:
        """Drop expired counters and return how many were removed."""

    def clear(self) -> None:
        """Drop every counter."""


class InMemoryRateCounterStore:
    """Process-local counter map guarded by a lock."""

    def __init__(self) -> None:
        self._counters: dict[str, RateCounter] = {}
        self._lock = Lock()

    def hit(self, key: str, window_seconds: int, now: float) -> RateCounter:
        with self._lock:
            entry = self._counters.get(key)
            if entry is None or now > entry.reset_at:
                current = RateCounter(count=1, reset_at=now + window_seconds)
            else:
                current = RateCounter(count=entry.count + 1, reset_at=entry.reset_at)
            self._counters[key] = current
            return current

    def sweep(self, now: float) -> int:
        with self._lock:
            expired = [key for key, entry in self._counters.items() if now > entry.reset_at]
            for key in expired:
                del self._counters[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)


class RedisRateCounterStore:
    """Shared counters in Redis; expiry is handled by key TTLs.

    Falls back to an in-process store when Redis is unreachable so a cache
    outage degrades limiting to per-process instead of failing requests.
    Redis is retried once ``retry_after_seconds`` have passed since the last
    failure.
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "ratelimit",
        retry_after_seconds: float | None = None,
    ) -> None:
        self._redis = client
        self._prefix = prefix
        self._fallback = InMemoryRateCounterStore()
        if retry_after_seconds is None:
            retry_after_seconds = settings.rate_limit_redis_retry_seconds
        self.retry_after_seconds = retry_after_seconds
        self._unavailable_until: float | None = None

    @property
    def using_fallback(self) -> bool:
        """True while Redis is skipped after a failure."""
        return self._unavailable_until is not None

    def hit(self, key: str, window_seconds: int, now: float) -> RateCounter:
        if self._unavailable_until is None or now >= self._unavailable_until:
            redis_key = f"{self._prefix}:{key}"
            try:
                pipe = self._redis.pipeline()
                pipe.set(redis_key, 0, ex=int(window_seconds), nx=True)
                pipe.incr(redis_key)
                pipe.pttl(redis_key)
                _, count, ttl_ms = pipe.execute()
            except redis.RedisError as exc:
                logger.warning(
                    "Redis rate-limit store unavailable, using local counters for %ss: %s",
                    self.retry_after_seconds,
                    exc,
                )
                self._unavailable_until = now + self.retry_after_seconds
            else:
                if self._unavailable_until is not None:
                    logger.info("Redis rate-limit store reachable again")
                    self._unavailable_until = None
                if ttl_ms is None or ttl_ms < 0:
                    ttl_ms = int(window_seconds) * 1000
                return RateCounter(count=int(count), reset_at=now + ttl_ms / 1000)
        return self._fallback.hit(key, window_seconds, now)

    def sweep(self, now: float) -> int:
        return self._fallback.sweep(now)

    def clear(self) -> None:
        try:
            keys = list(self._redis.scan_iter(match=f"{self._prefix}:*"))
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError as exc:
            logger.warning("Failed to clear Redis rate-limit keys: %s", exc)
        self._fallback.clear()


class RateLimiter:
    """Admission control per request, independent of business logic."""

    def __init__(
        self,
        store: RateCounterStore | None = None,
        tiers: dict[RateLimitTier, TierConfig] | None = None,
        sweep_every: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store: RateCounterStore = store if store is not None else InMemoryRateCounterStore()
        self.tiers = tiers or default_tiers()
        self.sweep_every = max(1, sweep_every or settings.rate_limit_sweep_every)
        self._clock = clock
        self._check_count = 0
        self._count_lock = Lock()

    def check(
        self,
        key: str,
        tier: RateLimitTier = RateLimitTier.GENERAL,
        path: str | None = None,
    ) -> RateLimitResult:
        """Count one request for ``key`` in ``tier`` and report the decision."""
        config = self.tiers[tier]
        now = self._clock()
        if path in HEALTH_CHECK_PATHS:
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                count=0,
                remaining=config.max_requests,
                reset_at=now,
            )

        counter = self.store.hit(f"{tier.value}:{key}", config.window_seconds, now)
        self._maybe_sweep(now)

        allowed = counter.count <= config.max_requests
        retry_after: int | None = None
        if not allowed:
            retry_after = max(0, math.ceil(counter.reset_at - now))
        return RateLimitResult(
            allowed=allowed,
            limit=config.max_requests,
            count=counter.count,
            remaining=max(0, config.max_requests - counter.count),
            reset_at=counter.reset_at,
            retry_after_seconds=retry_after,
        )

    def enforce(
        self,
        key: str,
        tier: RateLimitTier = RateLimitTier.GENERAL,
        path: str | None = None,
    ) -> RateLimitResult:
        """Like :meth:`check` but raise :class:`RateLimitedError` on denial."""
        result = self.check(key, tier, path)
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded for %s on tier %s (%d/%d)",
                key,
                tier.value,
                result.count,
                result.limit,
            )
            raise RateLimitedError(result.retry_after_seconds, headers=result.headers)
        return result

    def reset(self) -> None:
        """Drop all counters (tests and operator tooling)."""
        self.store.clear()
        with self._count_lock:
            self._check_count = 0

    def _maybe_sweep(self, now: float) -> None:
        with self._count_lock:
            self._check_count += 1
            due = self._check_count % self.sweep_every == 0
        if due:
            removed = self.store.sweep(now)
            if removed:
                logger.debug("Swept %d expired rate-limit counters", removed)


def build_store() -> RateCounterStore:
    """Return the counter store selected by settings."""
    if settings.rate_limit_backend == "redis":
        return RedisRateCounterStore(redis.from_url(settings.redis_url))
    return InMemoryRateCounterStore()


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(build_store())
    return _rate_limiter
