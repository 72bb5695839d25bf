"""Per-client request throttling for write endpoints.

Counters live in a :class:`TTLCounterStore` owned by the application
instance (``app.state``), so two apps in one process never share limits.
"""

from __future__ import annotations

import math
import time
from typing import Callable

import structlog
from fastapi import HTTPException, Request

logger = structlog.get_logger(__name__)


class TTLCounterStore:
    """Fixed-window counters that expire ``ttl`` seconds after the first hit."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}  # key → (count, expires_at)

    def incr(self, key: str, ttl: float) -> tuple[int, float]:
        """Count one hit for *key*; return ``(count, seconds_until_reset)``."""
        now = self._clock()
        count, expires_at = self._windows.get(key, (0, 0.0))
        if expires_at <= now:
            count, expires_at = 0, now + ttl
        count += 1
        self._windows[key] = (count, expires_at)
        self._purge(now)
        return count, expires_at - now

    def _purge(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._windows.items() if exp <= now]
        for k in expired:
            del self._windows[k]

    def __len__(self) -> int:
        return len(self._windows)


class RequestThrottle:
    """Allow at most ``limit`` hits per ``window`` seconds for each client key."""

    def __init__(
        self,
        store: TTLCounterStore,
        limit: int,
        window: float = 60.0,
        scope: str = "",
        trust_forwarded: bool = False,
    ) -> None:
        self._store = store
        self.limit = limit
        self.window = window
        self.scope = scope
        self.trust_forwarded = trust_forwarded

    def hit(self, client_key: str) -> tuple[bool, int]:
        """Return ``(allowed, retry_after_seconds)``."""
        count, reset_in = self._store.incr(f"{self.scope}:{client_key}", self.window)
        if count > self.limit:
            return False, max(1, math.ceil(reset_in))
        return True, 0


def client_key(request: Request, trust_forwarded: bool = False) -> str:
    """Identify the caller by peer address, or by the first forwarded hop when trusted."""
    forwarded = request.headers.get("X-Forwarded-For", "") if trust_forwarded else ""
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def limit_feedback(request: Request) -> None:
    """FastAPI dependency guarding feedback submission (HTTP 429)."""
    throttle: RequestThrottle = request.app.state.feedback_throttle
    key = client_key(request, throttle.trust_forwarded)
    allowed, retry_after = throttle.hit(key)
    if not allowed:
        logger.warning("throttle.limited", scope=throttle.scope, client=key, retry_after=retry_after)
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please retry later.",
            headers={"Retry-After": str(retry_after)},
        )
