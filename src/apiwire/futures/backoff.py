"""
Backoff curves for polling.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BackoffStrategy(str, Enum):
    """Shape of the delay curve between poll attempts."""

    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before each poll retry.

    ``delay_ms(n)`` is the wait after the n-th (0-based) non-terminal
    attempt:

    - constant: ``base_ms``
    - linear: ``base_ms * (n + 1)``
    - exponential: ``base_ms * 2**n``

    always capped at ``max_ms``.

    Example:
        >>> policy = BackoffPolicy()
        >>> [policy.delay_ms(n) for n in range(3)]
        [1000, 2000, 4000]
    """

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_ms: int = 1000
    max_ms: int = 30000

    @classmethod
    def constant(cls, interval_ms: int = 1000) -> BackoffPolicy:
        return cls(BackoffStrategy.CONSTANT, interval_ms, interval_ms)

    @classmethod
    def linear(cls, base_ms: int = 1000, max_ms: int | None = None) -> BackoffPolicy:
        return cls(BackoffStrategy.LINEAR, base_ms, max_ms if max_ms is not None else base_ms * 10)

    @classmethod
    def exponential(cls, base_ms: int = 1000, max_ms: int = 30000) -> BackoffPolicy:
        return cls(BackoffStrategy.EXPONENTIAL, base_ms, max_ms)

    def delay_ms(self, attempt: int) -> int:
        """Delay in milliseconds after the given 0-based attempt."""
        attempt = max(0, attempt)
        if self.strategy == BackoffStrategy.CONSTANT:
            delay = self.base_ms
        elif self.strategy == BackoffStrategy.LINEAR:
            delay = self.base_ms * (attempt + 1)
        else:
            # Avoid huge ints for long-running sessions.
            delay = self.base_ms * (2 ** min(attempt, 32))
        return int(min(delay, self.max_ms))
