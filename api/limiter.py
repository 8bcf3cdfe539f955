"""
api/limiter.py -- Shared rate limiters.

limiter:
    slowapi Limiter keyed by client IP. Import it in api/main.py (to mount as
    middleware) and in route modules to apply per-route limits with
    @limiter.limit(). A single shared instance means all routes share one
    in-memory counter store.

LoginRateLimiter:
    Brute-force lockout for POST /auth/login, keyed by (client IP, login
    identifier) rather than IP alone, so one noisy client behind a NAT does
    not lock out everyone else. Built on the same `limits` moving-window
    strategy slowapi uses internally. It is not a decorator because the key
    depends on the request body, and because a rejection here is an ordinary
    branch of the login handler (a 429 response), not an exception.
"""

from __future__ import annotations

import math
import time
from typing import NamedTuple

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


class RateLimitDecision(NamedTuple):
    allowed: bool
    remaining: int
    retry_after: int  # seconds until a slot frees up; 0 when allowed


class LoginRateLimiter:
    """Allow `max_attempts` login attempts per (ip, login) in any `window_seconds` span."""

    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_attempts, window_seconds, namespace="login")
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)

    @staticmethod
    def _identifiers(ip: str, login: str) -> tuple[str, str]:
        return ip or "unknown", login.strip().lower()

    def hit(self, ip: str, login: str) -> RateLimitDecision:
        """Record one attempt and report whether it is within the limit."""
        ids = self._identifiers(ip, login)
        allowed = self._limiter.hit(self._item, *ids)
        stats = self._limiter.get_window_stats(self._item, *ids)
        retry_after = 0 if allowed else max(1, math.ceil(stats.reset_time - time.time()))
        return RateLimitDecision(allowed=allowed, remaining=stats.remaining, retry_after=retry_after)

    def clear(self, ip: str, login: str) -> None:
        """Forget past attempts, e.g. after a successful login."""
        self._limiter.clear(self._item, *self._identifiers(ip, login))

    def reset(self) -> None:
        self._storage.reset()
