"""
Core runtime: request construction, the call pipeline and its context.
"""

from apiwire.core.context import Context
from apiwire.core.headers import (
    default_headers,
    merge_headers,
    normalize_headers,
    platform_headers,
    retry_headers,
)
from apiwire.core.pipeline import CallOptions, RequestPipeline, execute, unwrap
from apiwire.core.querystring import ArrayFormat, NestedFormat, encode_pairs, stringify
from apiwire.core.request import Request, Response, StreamResponse
from apiwire.core.result import CallResult
from apiwire.core.serializer import JsonSerializer, Serializer
from apiwire.core.url import apply_path_params, build_url

__all__ = [
    "ArrayFormat",
    "CallOptions",
    "CallResult",
    "Context",
    "JsonSerializer",
    "NestedFormat",
    "Request",
    "RequestPipeline",
    "Response",
    "Serializer",
    "StreamResponse",
    "apply_path_params",
    "build_url",
    "default_headers",
    "encode_pairs",
    "execute",
    "merge_headers",
    "normalize_headers",
    "platform_headers",
    "retry_headers",
    "stringify",
    "unwrap",
]
