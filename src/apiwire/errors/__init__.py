"""错误体系：结构化错误类型与状态码分类。

Error hierarchy for apiwire.
"""

from apiwire.errors.base import (
    ApiStatusError,
    ApiWireError,
    AwaitTimeoutError,
    CancelledError,
    CircuitOpenError,
    ConfigurationError,
    ConnectionError,
    DecodeError,
    ErrorContext,
    FutureExpiredError,
    ManifestValidationError,
    PollTimeoutError,
    RateLimitRejectedError,
    RequestFailedError,
    TimeoutError,
    TransportError,
    UnknownEndpointError,
    ValidationError,
)
from apiwire.errors.classification import (
    ErrorType,
    error_type_for_status,
    extract_error_message,
    is_retryable,
    is_retryable_type,
    message_for,
)

__all__ = [
    "ApiStatusError",
    "ApiWireError",
    "AwaitTimeoutError",
    "CancelledError",
    "CircuitOpenError",
    "ConfigurationError",
    "ConnectionError",
    "DecodeError",
    "ErrorContext",
    "ErrorType",
    "FutureExpiredError",
    "ManifestValidationError",
    "PollTimeoutError",
    "RateLimitRejectedError",
    "RequestFailedError",
    "TimeoutError",
    "TransportError",
    "UnknownEndpointError",
    "ValidationError",
    "error_type_for_status",
    "extract_error_message",
    "is_retryable",
    "is_retryable_type",
    "message_for",
]
