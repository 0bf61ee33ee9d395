"""
Rate Limiting
=============
Fixed-window request limiter guarding the code-issuing endpoints.

In-process only; each worker keeps its own counters.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .clock import Clock, SystemClock


@dataclass
class RateLimitInfo:
    """Rate limit check result with quota information."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # Unix timestamp
    retry_after: Optional[int] = None  # Seconds until retry allowed

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class FixedWindowLimiter:
    """
    Counts requests per key in fixed windows aligned to the epoch.

    Example:
        limiter = FixedWindowLimiter(rate=30, window=60)
        info = limiter.check("otp:generate:203.0.113.7")
    """

    def __init__(self, rate: int = 30, window: int = 60, clock: Optional[Clock] = None):
        """
        Args:
            rate: Number of requests allowed per window
            window: Window size in seconds
        """
        if rate <= 0 or window <= 0:
            raise ValueError("rate and window must be positive")
        self.rate = rate
        self.window = window
        self.clock = clock or SystemClock()
        self._buckets: Dict[str, Tuple[int, int]] = {}

    def check(self, key: str) -> RateLimitInfo:
        """Count one request against ``key`` and report whether it is allowed."""
        now = self.clock.now().timestamp()
        window_start = int(now // self.window) * self.window
        reset_at = window_start + self.window

        started, count = self._buckets.get(key, (window_start, 0))
        if started < window_start:
            started, count = window_start, 0

        if count >= self.rate:
            self._buckets[key] = (started, count)
            return RateLimitInfo(
                allowed=False,
                remaining=0,
                limit=self.rate,
                reset_at=reset_at,
                retry_after=max(reset_at - int(now), 1),
            )

        self._buckets[key] = (started, count + 1)
        self._evict(window_start)
        return RateLimitInfo(
            allowed=True,
            remaining=self.rate - count - 1,
            limit=self.rate,
            reset_at=reset_at,
        )

    def reset(self) -> None:
        self._buckets.clear()

    def _evict(self, window_start: int) -> None:
        if len(self._buckets) < 10_000:
            return
        self._buckets = {k: v for k, v in self._buckets.items() if v[0] >= window_start}

    @staticmethod
    def key(prefix: str, identifier: str) -> str:
        return f"ratelimit:{prefix}:{identifier}"
