"""
Retry with exponential backoff and jitter.

Retryability comes from the error itself (``error.retryable``), which the
pipeline derives from the status table and the ``x-should-retry`` header.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from apiwire.errors import ApiStatusError, is_retryable
from apiwire.resilience.ports import Retry
from apiwire.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = get_logger("apiwire.resilience.retry")


class JitterStrategy(str, Enum):
    """Jitter strategy for retry delays."""

    NONE = "none"
    FULL = "full"
    EQUAL = "equal"


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for a retry policy.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries)
        min_delay_ms: Delay before the first retry in milliseconds
        max_delay_ms: Maximum delay between retries in milliseconds
        jitter: Jitter strategy (none, full, equal)
        exponential_base: Growth factor per attempt
        respect_retry_after: Use a server ``retry-after`` hint when present
    """

    max_retries: int = 2
    min_delay_ms: int = 500
    max_delay_ms: int = 8000
    jitter: JitterStrategy = JitterStrategy.FULL
    exponential_base: float = 2.0
    respect_retry_after: bool = True

    @classmethod
    def from_policy(cls, policy: dict[str, Any] | None) -> RetryConfig:
        """Create config from a manifest ``policies`` entry.

        Args:
            policy: Mapping with max_retries/min_delay_ms/max_delay_ms/jitter

        Returns:
            RetryConfig instance
        """
        if not policy:
            return cls()
        jitter = policy.get("jitter", "full")
        return cls(
            max_retries=int(policy.get("max_retries", cls.max_retries)),
            min_delay_ms=int(policy.get("min_delay_ms", cls.min_delay_ms)),
            max_delay_ms=int(policy.get("max_delay_ms", cls.max_delay_ms)),
            jitter=JitterStrategy(jitter) if jitter in ("none", "full", "equal") else JitterStrategy.FULL,
        )

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that disables retries."""
        return cls(max_retries=0)


@dataclass
class RetryResult:
    """Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        attempts: Number of attempts made
        total_delay_ms: Total delay from retries in milliseconds
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    attempts: int = 0
    total_delay_ms: float = 0.0


class BackoffRetry(Retry):
    """Retry port with exponential backoff and jitter.

    Example:
        >>> retry = BackoffRetry(RetryConfig(max_retries=3))
        >>> value = await retry.with_retry(send_once)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize retry.

        Args:
            config: Default policy when the caller passes none
            sleep: Coroutine used to wait between attempts
        """
        self._config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int, config: RetryConfig | None = None, retry_after: float | None = None) -> float:
        """Calculate the delay before a retry.

        Args:
            attempt: Retry number (0-based)
            config: Policy, defaults to this instance's
            retry_after: Server hint in seconds

        Returns:
            Delay in seconds
        """
        config = config or self._config
        if config.respect_retry_after and retry_after is not None and retry_after > 0:
            return min(retry_after, config.max_delay_ms / 1000.0)

        base_delay_ms = min(
            config.min_delay_ms * (config.exponential_base**attempt),
            config.max_delay_ms,
        )
        if config.jitter == JitterStrategy.FULL:
            delay_ms = random.uniform(0, base_delay_ms)
        elif config.jitter == JitterStrategy.EQUAL:
            delay_ms = base_delay_ms / 2 + random.uniform(0, base_delay_ms / 2)
        else:
            delay_ms = base_delay_ms
        return delay_ms / 1000.0

    def should_retry(self, error: Exception, attempt: int, config: RetryConfig | None = None) -> bool:
        """Check whether an error should trigger another attempt."""
        config = config or self._config
        if attempt >= config.max_retries:
            return False
        return is_retryable(error)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        Args:
            operation: Async operation to execute
            config: Policy for this call
            on_retry: Called before each retry with (attempt, error, delay)

        Returns:
            RetryResult with success status and value/error
        """
        config = config or self._config
        total_delay = 0.0
        attempt = 0

        while True:
            try:
                value = await operation()
                return RetryResult(True, value=value, attempts=attempt + 1, total_delay_ms=total_delay * 1000)
            except Exception as e:
                attempt += 1
                if not self.should_retry(e, attempt - 1, config):
                    return RetryResult(False, error=e, attempts=attempt, total_delay_ms=total_delay * 1000)

                retry_after = e.retry_after if isinstance(e, ApiStatusError) else None
                delay = self.calculate_delay(attempt - 1, config, retry_after)
                total_delay += delay
                logger.warning("Retrying after error", attempt=attempt, delay_s=round(delay, 3), error=str(e))
                if on_retry:
                    on_retry(attempt, e, delay)
                await self._sleep(delay)

    async def with_retry(self, work: Callable[[], Awaitable[T]], policy: RetryConfig | None = None) -> T:
        result = await self.execute(work, policy)
        if result.success:
            return result.value
        assert result.error is not None
        raise result.error
