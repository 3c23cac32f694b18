"""错误分类模块：将 HTTP 状态码映射到固定的错误类型表。

Error classification for non-2xx responses and transport failures.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Error type derived from an HTTP status or a transport failure."""

    BAD_REQUEST = "bad_request"
    AUTHENTICATION = "authentication"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNPROCESSABLE_ENTITY = "unprocessable_entity"
    RATE_LIMIT = "rate_limit"
    INTERNAL_SERVER = "internal_server"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    UNKNOWN = "unknown"


_STATUS_TABLE: dict[int, ErrorType] = {
    400: ErrorType.BAD_REQUEST,
    401: ErrorType.AUTHENTICATION,
    403: ErrorType.PERMISSION_DENIED,
    404: ErrorType.NOT_FOUND,
    409: ErrorType.CONFLICT,
    422: ErrorType.UNPROCESSABLE_ENTITY,
    429: ErrorType.RATE_LIMIT,
}

_RETRYABLE_TYPES: frozenset[ErrorType] = frozenset(
    {
        ErrorType.RATE_LIMIT,
        ErrorType.INTERNAL_SERVER,
        ErrorType.TIMEOUT,
        ErrorType.CONNECTION,
    }
)

_MESSAGES: dict[ErrorType, str] = {
    ErrorType.BAD_REQUEST: "The request was malformed",
    ErrorType.AUTHENTICATION: "Authentication failed",
    ErrorType.PERMISSION_DENIED: "Permission denied",
    ErrorType.NOT_FOUND: "Resource not found",
    ErrorType.CONFLICT: "Request conflicts with the current state",
    ErrorType.UNPROCESSABLE_ENTITY: "The request could not be processed",
    ErrorType.RATE_LIMIT: "Rate limit exceeded",
    ErrorType.INTERNAL_SERVER: "The server failed to handle the request",
    ErrorType.TIMEOUT: "The request timed out",
    ErrorType.CONNECTION: "Could not connect to the server",
    ErrorType.UNKNOWN: "Unexpected response",
}


def error_type_for_status(status: int) -> ErrorType:
    """Map an HTTP status to its error type.

    Args:
        status: HTTP status code

    Returns:
        ErrorType from the fixed status table, any 5xx is internal_server

    Example:
        >>> error_type_for_status(429)
        <ErrorType.RATE_LIMIT: 'rate_limit'>
    """
    if status in _STATUS_TABLE:
        return _STATUS_TABLE[status]
    if 500 <= status < 600:
        return ErrorType.INTERNAL_SERVER
    return ErrorType.UNKNOWN


def should_retry_override(headers: Mapping[str, str] | None) -> bool | None:
    """Read the ``x-should-retry`` header, if present and recognizable."""
    if not headers:
        return None
    for name, value in headers.items():
        if name.lower() == "x-should-retry":
            lowered = str(value).strip().lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False
    return None


def is_retryable_type(
    error_type: ErrorType,
    headers: Mapping[str, str] | None = None,
) -> bool:
    """Check whether an error type is retryable.

    An explicit ``x-should-retry`` response header wins over the default.

    Args:
        error_type: The classified error type
        headers: Response headers, if the error came from a response

    Returns:
        True if the error should be retried
    """
    override = should_retry_override(headers)
    if override is not None:
        return override
    return error_type in _RETRYABLE_TYPES


def is_retryable(error: BaseException) -> bool:
    """Check whether a raised or returned error is worth retrying.

    Transport timeouts and connection failures are always retryable;
    ApiStatusError carries its own resolved flag.
    """
    return bool(getattr(error, "retryable", False))


def message_for(error_type: ErrorType) -> str:
    """Get the default human-readable message for an error type."""
    return _MESSAGES[error_type]


def extract_error_message(body: Any) -> str | None:
    """Extract an error message from a decoded response body.

    Supports ``{"error": {"message": ...}}``, ``{"error": "..."}``,
    ``{"message": ...}`` and ``{"detail": ...}`` envelopes.

    Args:
        body: Decoded response body

    Returns:
        Error message if found, None otherwise
    """
    if not isinstance(body, dict):
        return None

    if "error" in body:
        error = body["error"]
        if isinstance(error, dict):
            msg = error.get("message")
            if isinstance(msg, str):
                return msg
        elif isinstance(error, str):
            return error

    if isinstance(body.get("message"), str):
        return body["message"]

    detail = body.get("detail")
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list) and detail:
        return str(detail[0])

    return None
