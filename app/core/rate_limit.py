"""
Rate limiting for the AI service.

Two layers:
- A per-user token bucket limiter guarding the AI endpoints
  (default 5 requests/minute with a burst of 5).
- A global IP-keyed slowapi limiter as a safety net for every route.
"""

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a single rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: float


class TokenBucket:
    """
    Continuous-refill token bucket.

    Tokens refill at ``refill_rate`` per second up to ``capacity``.
    Each request consumes one token.
    """

    def __init__(self, capacity: int, refill_rate: float, now: float) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self.last_refill = now
        self.last_seen = now
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, now: float) -> RateDecision:
        with self._lock:
            self._refill(now)
            self.last_seen = now

            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return RateDecision(
                    allowed=True,
                    limit=self.capacity,
                    remaining=int(self.tokens),
                    retry_after=0.0,
                )

            retry_after = (1.0 - self.tokens) / self.refill_rate
            return RateDecision(
                allowed=False,
                limit=self.capacity,
                remaining=0,
                retry_after=retry_after,
            )

    def is_idle(self, now: float, ttl: float) -> bool:
        with self._lock:
            return now - self.last_seen >= ttl


class UserRateLimiter:
    """
    Per-user token buckets.

    The map lock only guards lookup, insertion and eviction.
    Token accounting happens under each bucket's own lock, so a busy
    user never blocks checks for another user.
    """

    def __init__(
        self,
        requests_per_minute: int = 5,
        burst: int = 5,
        idle_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")

        self.requests_per_minute = requests_per_minute
        self.burst = burst if burst > 0 else requests_per_minute
        self.refill_rate = requests_per_minute / 60.0
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _bucket_for(self, key: str, now: float) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(self.burst, self.refill_rate, now)
                self._buckets[key] = bucket
            return bucket

    def check(self, user_id: str) -> RateDecision:
        now = self._clock()
        decision = self._bucket_for(user_id, now).consume(now)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "user_id": user_id,
                    "retry_after": round(decision.retry_after, 2),
                },
            )
        return decision

    def evict_idle(self, now: Optional[float] = None) -> int:
        """
        Drop buckets for users idle longer than ``idle_ttl``.

        Returns:
            int: Number of evicted buckets.
        """
        now = self._clock() if now is None else now

        with self._lock:
            stale = [
                key
                for key, bucket in self._buckets.items()
                if bucket.is_idle(now, self.idle_ttl)
            ]
            for key in stale:
                del self._buckets[key]

        if stale:
            logger.debug(
                "Evicted idle rate limit buckets",
                extra={"evicted": len(stale), "remaining": len(self._buckets)},
            )
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    async def run_eviction(self, interval: float) -> None:
        """Evict idle buckets every ``interval`` seconds until cancelled."""
        logger.info(
            "Rate limit eviction loop started",
            extra={"interval_seconds": interval},
        )
        while True:
            await asyncio.sleep(interval)
            try:
                self.evict_idle()
            except Exception:
                logger.exception("Rate limit eviction sweep failed")


def rate_limit_headers(decision: RateDecision, per_minute: int) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(per_minute),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if not decision.allowed:
        retry_after = max(1, math.ceil(decision.retry_after))
        headers["Retry-After"] = str(retry_after)
        headers["X-RateLimit-Reset"] = str(int(time.time()) + retry_after)
    return headers


# --------------------------------------------------
# Global safety net (slowapi)
# --------------------------------------------------


def client_ip_key(request: Request) -> str:
    """
    Generate the global rate-limit key.

    Uses the client IP resolved by ClientInfoMiddleware, falling back
    to the socket peer.
    """
    ip = getattr(request.state, "ip_address", None)
    if ip and ip != "unknown":
        return f"ip:{ip}"

    ip = get_remote_address(request)
    return f"ip:{ip}" if ip else "anonymous"


def build_global_limiter(default_limit: str, enabled: bool = True) -> Limiter:
    return Limiter(
        key_func=client_ip_key,
        default_limits=[default_limit],
        enabled=enabled,
    )
