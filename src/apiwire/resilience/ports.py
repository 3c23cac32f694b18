"""弹性端口：限流、熔断、重试三个窄接口及其直通实现。

Resilience ports.

Each port takes a zero-argument unit of work and either returns its result
or declines to run it by raising. The request pipeline nests them as
RateLimiter -> CircuitBreaker -> Retry -> Transport.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apiwire.resilience.retry import RetryConfig

T = TypeVar("T")


class RateLimiter(ABC):
    """Admission control."""

    @abstractmethod
    async def within_limit(self, work: Callable[[], Awaitable[T]], key: str = "default") -> T:
        """Run ``work`` once admitted.

        Raises:
            RateLimitRejectedError: If the call is not admitted
        """


class CircuitBreaker(ABC):
    """Fail-fast isolation per circuit key."""

    @abstractmethod
    async def call(self, key: str, work: Callable[[], Awaitable[T]]) -> T:
        """Run ``work`` through the circuit named ``key``.

        Raises:
            CircuitOpenError: If the circuit is open
        """


class Retry(ABC):
    """Re-runs retryable failures."""

    @abstractmethod
    async def with_retry(self, work: Callable[[], Awaitable[T]], policy: RetryConfig | None = None) -> T:
        """Run ``work`` until it succeeds or the policy gives up.

        Raises:
            The last error once retries are exhausted or it is not retryable
        """


class NoopRateLimiter(RateLimiter):
    """Admits everything."""

    async def within_limit(self, work: Callable[[], Awaitable[T]], key: str = "default") -> T:
        return await work()


class NoopCircuitBreaker(CircuitBreaker):
    """Never opens."""

    async def call(self, key: str, work: Callable[[], Awaitable[T]]) -> T:
        return await work()


class NoopRetry(Retry):
    """Single attempt."""

    async def with_retry(self, work: Callable[[], Awaitable[T]], policy: RetryConfig | None = None) -> T:
        return await work()
