"""清单驱动的 API 客户端运行时：统一的请求构建、容错、流式解码与异步结果轮询。

apiwire: manifest-driven API client runtime.

Given a declarative description of an HTTP API (endpoints, types, auth,
resilience policy), apiwire executes calls with consistent request
construction, pluggable fault tolerance, streaming decode and
asynchronous result retrieval.
"""
from __future__ import annotations

from apiwire._features import HAS_HTTP2, HAS_KEYRING, require_extra
from apiwire.client import ApiClient, ApiClientBuilder
from apiwire.core import CallOptions, CallResult, Context, RequestPipeline, execute
from apiwire.errors import (
    ApiStatusError,
    ApiWireError,
    DecodeError,
    ErrorType,
    TransportError,
    ValidationError,
)
from apiwire.futures import (
    BackoffPolicy,
    CombinedFuture,
    FuturePoller,
    FutureResult,
    PollHandle,
    PollOptions,
    QueueState,
    combine,
)
from apiwire.manifest import Manifest, fetch_endpoint, load_manifest, load_manifest_file
from apiwire.streaming import EventStream, SSEDecoder, StreamEvent

__version__ = "0.3.0"

__all__ = [
    # Client
    "ApiClient",
    "ApiClientBuilder",
    # Feature flags
    "HAS_HTTP2",
    "HAS_KEYRING",
    "require_extra",
    # Errors
    "ApiStatusError",
    "ApiWireError",
    "DecodeError",
    "ErrorType",
    "TransportError",
    "ValidationError",
    # Manifest
    "Manifest",
    "fetch_endpoint",
    "load_manifest",
    "load_manifest_file",
    # Pipeline
    "CallOptions",
    "CallResult",
    "Context",
    "RequestPipeline",
    "execute",
    # Streaming
    "EventStream",
    "SSEDecoder",
    "StreamEvent",
    # Futures
    "BackoffPolicy",
    "CombinedFuture",
    "FuturePoller",
    "FutureResult",
    "PollHandle",
    "PollOptions",
    "QueueState",
    "combine",
    # Version
    "__version__",
]
