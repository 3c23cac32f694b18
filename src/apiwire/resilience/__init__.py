"""
Resilience module for apiwire.

Provides the three resilience ports and their default adapters:
- RateLimiter: token bucket per key
- CircuitBreaker: closed/open/half-open circuit per key
- Retry: exponential backoff with jitter
"""

from apiwire.resilience.circuit_breaker import (
    Circuit,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from apiwire.resilience.ports import (
    CircuitBreaker,
    NoopCircuitBreaker,
    NoopRateLimiter,
    NoopRetry,
    RateLimiter,
    Retry,
)
from apiwire.resilience.rate_limiter import (
    RateLimiterConfig,
    TokenBucket,
    TokenBucketRateLimiter,
)
from apiwire.resilience.retry import (
    BackoffRetry,
    JitterStrategy,
    RetryConfig,
    RetryResult,
)

__all__ = [
    "BackoffRetry",
    "Circuit",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "JitterStrategy",
    "NoopCircuitBreaker",
    "NoopRateLimiter",
    "NoopRetry",
    "RateLimiter",
    "RateLimiterConfig",
    "Retry",
    "RetryConfig",
    "RetryResult",
    "TokenBucket",
    "TokenBucketRateLimiter",
]
