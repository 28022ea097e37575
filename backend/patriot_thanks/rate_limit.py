"""Sliding-window rate limiting held in process memory.

State is not shared between worker processes and does not survive a
restart. One limiter instance lives on ``app.state.rate_limiter``.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: float | None = None

    @property
    def retry_after_minutes(self) -> int:
        return max(1, math.ceil((self.retry_after or 0) / 60))


@dataclass
class InMemoryRateLimiter:
    clock: Callable[[], float] = time.monotonic
    sweep_interval: float = 300.0
    _buckets: dict[str, list[float]] = field(default_factory=dict)
    _expires_at: dict[str, float] = field(default_factory=dict)
    _next_sweep: float | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def tracked_keys(self) -> int:
        return len(self._buckets)

    def _sweep(self, now: float) -> None:
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        expired = [identifier for identifier, expires_at in self._expires_at.items() if expires_at <= now]
        for identifier in expired:
            self._buckets.pop(identifier, None)
            self._expires_at.pop(identifier, None)
        if expired:
            logger.debug("Dropped %s idle rate limit bucket(s)", len(expired))

    def _window(self, identifier: str, window: int, now: float) -> list[float]:
        window_start = now - window
        bucket = [stamp for stamp in self._buckets.get(identifier, []) if stamp > window_start]
        if bucket:
            self._buckets[identifier] = bucket
        else:
            self._buckets.pop(identifier, None)
            self._expires_at.pop(identifier, None)
        return bucket

    def is_allowed(self, identifier: str, limit: int, window: int) -> RateLimitResult:
        """Record one attempt for ``identifier`` unless the window is full."""
        with self._lock:
            now = self.clock()
            self._sweep(now)
            bucket = self._window(identifier, window, now)
            reset_at = (bucket[0] + window) if bucket else now + window

            if len(bucket) >= limit:
                logger.warning("Rate limit reached for %s (%s in %ss)", identifier, limit, window)
                return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at, retry_after=reset_at - now)

            bucket.append(now)
            self._buckets[identifier] = bucket
            self._expires_at[identifier] = now + window
            return RateLimitResult(allowed=True, remaining=limit - len(bucket), reset_at=reset_at)

    def get_status(self, identifier: str, limit: int, window: int) -> RateLimitResult:
        with self._lock:
            now = self.clock()
            bucket = self._window(identifier, window, now)
            remaining = max(0, limit - len(bucket))
            reset_at = (bucket[0] + window) if bucket else now + window
            return RateLimitResult(
                allowed=remaining > 0,
                remaining=remaining,
                reset_at=reset_at,
                retry_after=max(0.0, reset_at - now) if remaining == 0 else None,
            )

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._buckets.pop(identifier, None)
            self._expires_at.pop(identifier, None)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"
