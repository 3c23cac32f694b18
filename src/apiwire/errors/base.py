"""错误基类：提供分层错误体系和结构化错误上下文。

Base error classes for apiwire.

Provides a layered error hierarchy:
- ApiWireError: Base class for all library errors
- ValidationError: Manifest or instance failed schema checks
- UnknownEndpointError / ConfigurationError: Fail-fast programmer errors
- TransportError: Connection and timeout failures below HTTP
- ApiStatusError: Non-2xx responses, classified by status
- DecodeError: Bodies that could not be decoded or unwrapped
- Future errors: PollTimeoutError, FutureExpiredError, RequestFailedError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from apiwire.errors.classification import ErrorType


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    field_path: str | None = None
    """Path to the problematic field (e.g., 'endpoints[0].path')"""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'manifest', 'transport', 'pipeline')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.field_path:
            parts.append(f"at '{self.field_path}'")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ApiWireError(Exception):
    """Base class for all apiwire errors.

    Pipeline and future surfaces return these as values; only
    configuration mistakes are raised at the call site.

    Attributes:
        message: Human-readable error message
        context: Structured error context
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> ApiWireError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class ValidationError(ApiWireError):
    """A manifest or a type instance failed schema checks.

    Attributes:
        errors: List of ``(path, message)`` pairs, path may be empty
    """

    def __init__(
        self,
        message: str,
        errors: list[tuple[str, str]] | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="validation")
        self.errors = list(errors or [])
        if self.errors and not ctx.field_path and self.errors[0][0]:
            ctx.field_path = self.errors[0][0]
        super().__init__(message, ctx)

    @property
    def messages(self) -> list[str]:
        """Flattened ``path: message`` strings."""
        return [f"{path}: {msg}" if path else msg for path, msg in self.errors]


class ManifestValidationError(ValidationError):
    """Raised by ``load_manifest`` with every accumulated structural error."""

    def __init__(self, errors: list[str], *, manifest_name: str | None = None) -> None:
        ctx = ErrorContext(source="manifest")
        if manifest_name:
            ctx.details["manifest"] = manifest_name
        summary = "; ".join(errors[:3])
        if len(errors) > 3:
            summary += f" (+{len(errors) - 3} more)"
        super().__init__(
            f"Manifest validation failed: {summary}",
            [("", e) for e in errors],
            ctx,
        )
        self.manifest_errors = list(errors)


class UnknownEndpointError(ApiWireError, KeyError):
    """An endpoint id that the manifest does not declare."""

    def __init__(self, endpoint_id: str) -> None:
        ctx = ErrorContext(source="manifest")
        ctx.details["endpoint_id"] = endpoint_id
        super().__init__(f"unknown endpoint: {endpoint_id}", ctx)
        self.endpoint_id = endpoint_id

    def __str__(self) -> str:
        return self._format_message()


class ConfigurationError(ApiWireError):
    """A required port or setting is missing from the client context."""

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        ctx = ErrorContext(source="config")
        if setting:
            ctx.details["setting"] = setting
        super().__init__(message, ctx)
        self.setting = setting


class TransportError(ApiWireError):
    """Error below the HTTP layer.

    Raised when:
    - Network connection failure
    - Timeout
    - SSL/TLS errors
    - Proxy errors
    """

    retryable = True

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="transport")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx)
        self.url = url
        self.__cause__ = cause


class ConnectionError(TransportError):
    """The connection could not be established or was dropped."""


class TimeoutError(TransportError):
    """The transport gave up waiting for the remote side."""


class ApiStatusError(ApiWireError):
    """A response outside the 2xx range.

    Attributes:
        status: HTTP status code
        type: Error type derived from the status table
        body: Decoded error body (never unwrapped)
        headers: Response headers, lower-cased
        retryable: Default retryability, overridden by ``x-should-retry``
    """

    def __init__(
        self,
        status: int,
        type: ErrorType,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        retryable: bool = False,
        message: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="remote")
        ctx.details["status"] = status
        ctx.details["type"] = type.value
        ctx.details["retryable"] = retryable
        request_id = (headers or {}).get("x-request-id")
        if request_id:
            ctx.details["request_id"] = request_id
        super().__init__(message or f"HTTP {status} ({type.value})", ctx)
        self.status = status
        self.type = type
        self.body = body
        self.headers = dict(headers or {})
        self.retryable = retryable
        self.request_id = request_id

    @property
    def retry_after(self) -> float | None:
        """Server-suggested delay in seconds, if the response carried one."""
        raw = self.headers.get("retry-after")
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    @classmethod
    def from_response(
        cls,
        status: int,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ApiStatusError:
        """Create an ApiStatusError from a decoded HTTP response.

        Args:
            status: HTTP status code
            body: Decoded response body
            headers: Response headers

        Returns:
            ApiStatusError with type and retryability resolved
        """
        from apiwire.errors.classification import (
            error_type_for_status,
            extract_error_message,
            is_retryable_type,
        )

        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        error_type = error_type_for_status(status)
        message = extract_error_message(body)
        return cls(
            status,
            error_type,
            body,
            headers=lowered,
            retryable=is_retryable_type(error_type, lowered),
            message=f"HTTP {status}: {message}" if message else None,
        )


class DecodeError(ApiWireError):
    """A body could not be decoded, validated, or unwrapped.

    Distinct from ApiStatusError: the HTTP status may well be 2xx.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = ErrorContext(source="decode", field_path=path)
        if status is not None:
            ctx.details["status"] = status
        super().__init__(message, ctx)
        self.status = status
        self.path = path
        self.__cause__ = cause


class CircuitOpenError(ApiWireError):
    """The circuit breaker declined to run the call."""

    def __init__(self, key: str, time_until_retry: float | None = None) -> None:
        ctx = ErrorContext(source="resilience")
        ctx.details["circuit"] = key
        if time_until_retry is not None:
            ctx.details["time_until_retry"] = round(time_until_retry, 3)
        super().__init__(f"Circuit '{key}' is open", ctx)
        self.key = key
        self.time_until_retry = time_until_retry


class RateLimitRejectedError(ApiWireError):
    """The rate limiter declined to admit the call."""

    def __init__(self, key: str, wait_time: float | None = None) -> None:
        ctx = ErrorContext(source="resilience")
        ctx.details["limiter"] = key
        super().__init__(f"Rate limit '{key}' rejected the call", ctx)
        self.key = key
        self.wait_time = wait_time


class PollTimeoutError(ApiWireError):
    """The poll session exhausted its time budget."""

    def __init__(self, request_id: str, elapsed_ms: float, attempts: int) -> None:
        ctx = ErrorContext(source="futures")
        ctx.details.update(
            {"request_id": request_id, "elapsed_ms": round(elapsed_ms), "attempts": attempts}
        )
        super().__init__(f"Polling {request_id} timed out after {round(elapsed_ms)}ms", ctx)
        self.request_id = request_id
        self.elapsed_ms = elapsed_ms
        self.attempts = attempts


class FutureExpiredError(ApiWireError):
    """The server no longer holds the result (HTTP 410)."""

    def __init__(self, request_id: str, body: Any = None) -> None:
        ctx = ErrorContext(source="futures")
        ctx.details["request_id"] = request_id
        super().__init__(f"Promise expired for {request_id}", ctx)
        self.request_id = request_id
        self.body = body


class RequestFailedError(ApiWireError):
    """The server reported the asynchronous operation as failed."""

    def __init__(self, request_id: str, payload: Any) -> None:
        ctx = ErrorContext(source="futures")
        ctx.details["request_id"] = request_id
        detail = payload.get("message") if isinstance(payload, dict) else payload
        super().__init__(f"Request {request_id} failed: {detail}", ctx)
        self.request_id = request_id
        self.payload = payload


class AwaitTimeoutError(ApiWireError):
    """The caller's wait ended before the poll session finished."""

    def __init__(self, request_id: str | None, timeout: float) -> None:
        ctx = ErrorContext(source="futures")
        if request_id:
            ctx.details["request_id"] = request_id
        super().__init__(f"Timed out after {timeout}s waiting for {request_id or 'futures'}", ctx)
        self.request_id = request_id
        self.timeout = timeout


class CancelledError(ApiWireError):
    """The poll session was cancelled by its owner."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Polling {request_id} was cancelled", ErrorContext(source="futures"))
        self.request_id = request_id
