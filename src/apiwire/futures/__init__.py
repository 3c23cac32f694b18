"""
Futures: polling server-side async operations to completion.
"""

from apiwire.futures.backoff import BackoffPolicy, BackoffStrategy
from apiwire.futures.cache import CachedResult, FutureResultCache
from apiwire.futures.combine import CombinedFuture, combine
from apiwire.futures.polling import (
    FuturePoller,
    FutureResult,
    PollHandle,
    PollOptions,
    PollSession,
    QueueState,
    QueueStateChange,
)

__all__ = [
    "BackoffPolicy",
    "BackoffStrategy",
    "CachedResult",
    "CombinedFuture",
    "FuturePoller",
    "FutureResult",
    "FutureResultCache",
    "PollHandle",
    "PollOptions",
    "PollSession",
    "QueueState",
    "QueueStateChange",
    "combine",
]
