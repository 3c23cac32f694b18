"""
Token bucket rate limiting keyed by limiter name.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from apiwire.errors import RateLimitRejectedError
from apiwire.resilience.ports import RateLimiter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimiterConfig:
    """Configuration for one token bucket.

    Attributes:
        requests_per_second: Refill rate (0 = unlimited)
        burst_size: Bucket capacity
        max_wait_seconds: Longest a call may wait for a token before it is
            rejected; None waits indefinitely
    """

    requests_per_second: float = 0.0
    burst_size: int | None = None
    max_wait_seconds: float | None = None

    @classmethod
    def from_rps(cls, rps: float, burst_multiplier: float = 1.5, max_wait_seconds: float | None = None) -> RateLimiterConfig:
        burst = max(1, int(rps * burst_multiplier)) if rps > 0 else None
        return cls(requests_per_second=rps, burst_size=burst, max_wait_seconds=max_wait_seconds)

    @classmethod
    def from_rpm(cls, rpm: float, burst_multiplier: float = 1.5) -> RateLimiterConfig:
        return cls.from_rps(rpm / 60.0, burst_multiplier)

    @classmethod
    def unlimited(cls) -> RateLimiterConfig:
        return cls(requests_per_second=0.0)


class TokenBucket:
    """Token bucket for a single key.

    - Tokens are added at a fixed rate
    - Calls consume tokens
    - If no tokens are available, calls wait
    """

    def __init__(self, config: RateLimiterConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._rate = config.requests_per_second
        self._max_tokens = float(config.burst_size or 1)
        self._tokens = self._max_tokens
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        if self._rate <= 0:
            return
        now = self._clock()
        self._tokens = min(self._tokens + (now - self._last_refill) * self._rate, self._max_tokens)
        self._last_refill = now

    def wait_time(self, tokens: int = 1) -> float:
        """Seconds until ``tokens`` are available."""
        if self._rate <= 0:
            return 0.0
        self._refill()
        if self._tokens >= tokens:
            return 0.0
        return (tokens - self._tokens) / self._rate

    async def acquire(self, key: str, tokens: int = 1) -> float:
        """Take tokens, waiting if allowed.

        Returns:
            Seconds waited

        Raises:
            RateLimitRejectedError: If the wait would exceed ``max_wait_seconds``
        """
        if self._rate <= 0:
            return 0.0
        async with self._lock:
            wait = self.wait_time(tokens)
            limit = self._config.max_wait_seconds
            if limit is not None and wait > limit:
                raise RateLimitRejectedError(key, wait)
            if wait > 0:
                await asyncio.sleep(wait)
                self._refill()
            self._tokens -= tokens
            return wait

    def try_acquire(self, tokens: int = 1) -> bool:
        """Take tokens only if immediately available."""
        if self._rate <= 0:
            return True
        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens


class TokenBucketRateLimiter(RateLimiter):
    """Rate limiter port with one bucket per key.

    Example:
        >>> limiter = TokenBucketRateLimiter(RateLimiterConfig.from_rps(10))
        >>> value = await limiter.within_limit(send, key="jobs.create")
    """

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        *,
        overrides: dict[str, RateLimiterConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RateLimiterConfig()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    def bucket(self, key: str) -> TokenBucket:
        """Get or create the bucket for a key."""
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(self._overrides.get(key, self._config), self._clock)
            self._buckets[key] = bucket
        return bucket

    async def within_limit(self, work: Callable[[], Awaitable[T]], key: str = "default") -> T:
        await self.bucket(key).acquire(key)
        return await work()
