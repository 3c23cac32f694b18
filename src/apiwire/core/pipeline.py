"""请求管线：编码、构建请求、弹性栈、传输、解码、解包与分类。

Request pipeline.

One logical call runs these stages in order; a failing stage
short-circuits the rest:

1. Resolve the endpoint (unknown ids raise)
2. Encode the payload through the serializer
3. Build the request: URL, query, layered headers, idempotency key
4. RateLimiter -> CircuitBreaker -> Retry -> Transport.send
5. Decode the body
6. Extract ``response_unwrap``
7. Classify non-2xx statuses as ApiStatusError

Every outcome after stage 1 is returned as a CallResult value.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from apiwire.core.headers import (
    default_headers,
    merge_headers,
    platform_headers,
    retry_headers,
)
from apiwire.core.request import Request, Response, StreamResponse
from apiwire.core.result import CallResult
from apiwire.core.url import build_url
from apiwire.errors import (
    ApiStatusError,
    ApiWireError,
    ConfigurationError,
    ConnectionError,
    DecodeError,
    ErrorType,
    TimeoutError,
    ValidationError,
    error_type_for_status,
    is_retryable_type,
)
from apiwire.streaming import EventStream
from apiwire.telemetry import (
    REQUEST_EXCEPTION,
    REQUEST_START,
    REQUEST_STOP,
    get_logger,
)

if TYPE_CHECKING:
    from apiwire.core.context import Context
    from apiwire.core.querystring import ArrayFormat, NestedFormat
    from apiwire.futures.polling import FuturePoller, PollHandle, PollOptions
    from apiwire.manifest.models import Endpoint, Manifest

logger = get_logger("apiwire.pipeline")

_QUERY_METHODS = frozenset({"GET", "HEAD"})
_STREAM_ACCEPT = {"sse": "text/event-stream", "json_lines": "application/x-ndjson"}


@dataclass(frozen=True)
class CallOptions:
    """Per-call overrides.

    Attributes:
        path_params: Values for path template placeholders
        query: Query parameters, layered over the endpoint's
        headers: Highest-precedence headers
        idempotency_key: Use this key instead of generating one
        array_format: Query array format for this call
        nested_format: Query nested-object format for this call
        timeout_ms: Request timeout for this call
    """

    path_params: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    idempotency_key: str | None = None
    array_format: ArrayFormat | str | None = None
    nested_format: NestedFormat | str | None = None
    timeout_ms: int | None = None


class _RetryableStatus(ApiStatusError):
    """Raised inside the unit of work so the retry layer sees the status.

    Carries the raw response; it is decoded once the stack returns.
    """

    def __init__(self, response: Response) -> None:
        super().__init__(
            response.status,
            error_type_for_status(response.status),
            headers=response.headers,
            retryable=True,
        )
        self.response = response


def unwrap(value: Any, path: list[str]) -> Any:
    """Follow a key path into a decoded body.

    Raises:
        DecodeError: If any segment is missing

    Example:
        >>> unwrap({"data": {"items": [1]}}, ["data", "items"])
        [1]
    """
    current = value
    for index, key in enumerate(path):
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            where = ".".join(path[: index + 1])
            raise DecodeError(f"response_unwrap path '{where}' not found in body", path=where)
    return current


def error_type_name(error: BaseException) -> str:
    """Short classification used in telemetry and logs."""
    if isinstance(error, ApiStatusError):
        return error.type.value
    if isinstance(error, TimeoutError):
        return ErrorType.TIMEOUT.value
    if isinstance(error, ConnectionError):
        return ErrorType.CONNECTION.value
    return type(error).__name__


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


class RequestPipeline:
    """Executes manifest endpoints against a Context.

    Example:
        >>> pipeline = RequestPipeline(manifest, context)
        >>> result = await pipeline.execute("models.get", options=CallOptions(path_params={"id": "m-1"}))
        >>> if result.ok:
        ...     print(result.value)
    """

    def __init__(self, manifest: Manifest, context: Context) -> None:
        self.manifest = manifest
        self.context = context
        self._poller: FuturePoller | None = None

    @property
    def poller(self) -> FuturePoller:
        """Poller that starts and tracks this pipeline's poll sessions."""
        if self._poller is None:
            from apiwire.futures.polling import FuturePoller

            self._poller = FuturePoller(self.manifest, self.context, pipeline=self)
        return self._poller

    # -- request construction -------------------------------------------

    def idempotency_key(self, endpoint: Endpoint, options: CallOptions | None = None) -> str | None:
        """Key for one logical call, None when the endpoint sends none."""
        if not endpoint.sends_idempotency_key:
            return None
        if options is not None and options.idempotency_key:
            return options.idempotency_key
        return str(uuid.uuid4())

    def build_request(
        self,
        endpoint: Endpoint,
        payload: Any = None,
        options: CallOptions | None = None,
        *,
        idempotency_key: str | None = None,
        pool_type: str = "default",
    ) -> Request:
        """Encode the payload and build the outgoing request.

        For GET and HEAD a mapping payload becomes query parameters;
        otherwise it is encoded as the body.

        Raises:
            ValidationError: If the payload does not match the request type or cannot be encoded
            ConfigurationError: If the context lacks a base URL or auth group
        """
        ctx = self.context
        options = options or CallOptions()
        method = endpoint.method.upper()
        body: bytes | None = None
        content_type: str | None = None
        payload_query: dict[str, Any] = {}

        if payload is not None and endpoint.body_type != "none":
            if method in _QUERY_METHODS:
                if not isinstance(payload, Mapping):
                    raise ValidationError(
                        f"{method} payload must be a mapping of query parameters",
                        [("", f"expected an object, got {type(payload).__name__}")],
                    )
                schema = ctx.schema(endpoint.request)
                payload_query = dict(schema.to_wire(payload) if schema is not None else payload)
            elif endpoint.body_type == "raw":
                body = payload if isinstance(payload, bytes) else str(payload).encode()
                content_type = endpoint.content_type or "application/octet-stream"
            else:
                body = ctx.serializer.encode(payload, ctx.schema(endpoint.request))
                content_type = endpoint.content_type or ctx.serializer.content_type

        timeout_ms = options.timeout_ms or endpoint.timeout_ms or ctx.timeout_ms
        url = build_url(
            ctx.require_base_url(),
            endpoint.path,
            options.path_params,
            {**endpoint.query, **payload_query, **options.query},
            options.array_format or ctx.array_format,
            options.nested_format or ctx.nested_format,
        )

        layers: list[Mapping[str, Any]] = [merge_headers(default_headers(content_type), ctx.headers)]
        if ctx.platform_headers:
            layers.append({**platform_headers(), **retry_headers(0, timeout_ms)})
        layers.append(endpoint.headers)
        auth_options = {"endpoint_id": endpoint.id, "method": method, "url": url}
        for provider in ctx.auth_for(endpoint.auth):
            layers.append(provider.headers(auth_options))
        if idempotency_key is not None and method != "GET":
            layers.append({endpoint.idempotency_header or ctx.idempotency_header: idempotency_key})
        layers.append(options.headers)

        return Request(
            method=method,
            url=url,
            headers=merge_headers(*layers),
            body=body,
            endpoint_id=endpoint.id,
            timeout=timeout_ms / 1000 if timeout_ms else None,
            pool_type=pool_type,
        )

    # -- execution --------------------------------------------------------

    async def execute(
        self,
        endpoint_id: str,
        payload: Any = None,
        options: CallOptions | None = None,
    ) -> CallResult[Any]:
        """Run one call through the full pipeline.

        Args:
            endpoint_id: Manifest endpoint id
            payload: Request payload (body, or query for GET)
            options: Per-call overrides

        Returns:
            CallResult with the decoded value or a classified error

        Raises:
            UnknownEndpointError: If the endpoint id is not declared
            ConfigurationError: If a required port or setting is missing
        """
        endpoint = self.manifest.fetch_endpoint(endpoint_id)
        transport = self.context.require_transport()
        options = options or CallOptions()
        policy = self.context.retry_policy(endpoint.retry)
        started = time.monotonic()

        # Generated once so every attempt carries the same key.
        key = self.idempotency_key(endpoint, options)
        try:
            request = self.build_request(endpoint, payload, options, idempotency_key=key)
        except ValidationError as exc:
            logger.debug("Payload rejected", endpoint_id=endpoint.id, error=str(exc))
            return CallResult.failure(exc, elapsed_ms=_elapsed_ms(started))

        telemetry = self.context.telemetry
        metadata = {"endpoint_id": endpoint.id, "method": request.method, "path": endpoint.path}
        telemetry.emit(REQUEST_START, dict(metadata))

        attempts = 0

        async def send_once() -> Response:
            nonlocal attempts
            attempt_request = request
            if self.context.platform_headers and attempts:
                attempt_request = request.with_headers(retry_headers(attempts, None))
            attempts += 1
            response = await transport.send(attempt_request)
            if not response.ok and is_retryable_type(error_type_for_status(response.status), response.headers):
                raise _RetryableStatus(response)
            return response

        async def guarded() -> Response:
            return await self.context.circuit_breaker.call(
                endpoint.circuit_breaker or endpoint.id,
                lambda: self.context.retry.with_retry(send_once, policy),
            )

        response: Response | None = None
        error: ApiWireError | None = None
        value: Any = None
        try:
            response = await self.context.rate_limiter.within_limit(guarded, key=endpoint.rate_limit or endpoint.id)
        except _RetryableStatus as exc:
            response = exc.response
        except ApiWireError as exc:
            error = exc
        except Exception as exc:
            telemetry.emit(
                REQUEST_EXCEPTION,
                {**metadata, "outcome": "crash", "error_type": type(exc).__name__},
                {"duration_ms": _elapsed_ms(started), "retry_count": max(attempts - 1, 0)},
            )
            raise

        if response is not None:
            value, error = self._decode(endpoint, response)

        elapsed = _elapsed_ms(started)
        retry_count = max(attempts - 1, 0)
        status = response.status if response is not None else None
        headers = dict(response.headers) if response is not None else {}
        measurements = {"duration_ms": elapsed, "retry_count": retry_count}

        if error is None:
            telemetry.emit(REQUEST_STOP, {**metadata, "outcome": "ok", "status": status}, measurements)
            logger.debug("Call completed", endpoint_id=endpoint.id, status=status, retry_count=retry_count)
            return CallResult.success(
                value, status=status, retry_count=retry_count, elapsed_ms=elapsed, headers=headers
            )

        error_type = error_type_name(error)
        telemetry.emit(
            REQUEST_EXCEPTION,
            {**metadata, "outcome": "error", "status": status, "error_type": error_type},
            measurements,
        )
        logger.debug("Call failed", endpoint_id=endpoint.id, status=status, error_type=error_type)
        return CallResult.failure(
            error, status=status, retry_count=retry_count, elapsed_ms=elapsed, headers=headers
        )

    def _decode(self, endpoint: Endpoint, response: Response) -> tuple[Any, ApiWireError | None]:
        serializer = self.context.serializer
        if not response.ok:
            try:
                body = serializer.decode(response.body)
            except DecodeError as exc:
                return None, DecodeError(
                    f"Malformed error body for HTTP {response.status}: {exc.message}",
                    status=response.status,
                    cause=exc,
                )
            return None, ApiStatusError.from_response(response.status, body, response.headers)

        try:
            body = serializer.decode(response.body, self.context.schema(endpoint.response))
            return unwrap(body, endpoint.unwrap_path), None
        except DecodeError as exc:
            if exc.status is None:
                exc.status = response.status
                exc.context.details["status"] = response.status
            return None, exc
        except ValidationError as exc:
            return None, exc

    # -- streaming --------------------------------------------------------

    async def stream(
        self,
        endpoint_id: str,
        payload: Any = None,
        options: CallOptions | None = None,
    ) -> CallResult[EventStream]:
        """Open a streaming call.

        The request passes the rate limiter and circuit breaker but is never
        retried. On 2xx the value is an EventStream the caller must consume
        or close.

        Raises:
            UnknownEndpointError: If the endpoint id is not declared
            ConfigurationError: If the endpoint is not a streaming endpoint
        """
        endpoint = self.manifest.fetch_endpoint(endpoint_id)
        if not endpoint.streaming:
            raise ConfigurationError(f"Endpoint {endpoint.id} is not a streaming endpoint", setting="streaming")
        transport = self.context.require_transport()
        options = options or CallOptions()
        started = time.monotonic()

        key = self.idempotency_key(endpoint, options)
        try:
            request = self.build_request(endpoint, payload, options, idempotency_key=key, pool_type="streaming")
        except ValidationError as exc:
            return CallResult.failure(exc, elapsed_ms=_elapsed_ms(started))
        request = request.with_headers(
            {"accept": _STREAM_ACCEPT.get(endpoint.stream_format, "text/event-stream"), **options.headers}
        )

        telemetry = self.context.telemetry
        metadata = {"endpoint_id": endpoint.id, "method": request.method, "path": endpoint.path, "streaming": True}
        telemetry.emit(REQUEST_START, dict(metadata))

        async def open_stream() -> StreamResponse | Response:
            streamed = await transport.stream(request)
            if streamed.ok:
                return streamed
            # Error bodies are small; read them and release the connection.
            try:
                body = await streamed.read()
            finally:
                await streamed.aclose()
            response = Response(status=streamed.status, headers=streamed.headers, body=body)
            if is_retryable_type(error_type_for_status(response.status), response.headers):
                raise _RetryableStatus(response)
            return response

        async def guarded() -> StreamResponse | Response:
            return await self.context.circuit_breaker.call(endpoint.circuit_breaker or endpoint.id, open_stream)

        error: ApiWireError | None = None
        result: StreamResponse | Response | None = None
        try:
            result = await self.context.rate_limiter.within_limit(guarded, key=endpoint.rate_limit or endpoint.id)
        except _RetryableStatus as exc:
            result = exc.response
        except ApiWireError as exc:
            error = exc

        if isinstance(result, Response):
            _, error = self._decode(endpoint, result)

        elapsed = _elapsed_ms(started)
        status = result.status if result is not None else None
        measurements = {"duration_ms": elapsed, "retry_count": 0}
        if error is not None:
            telemetry.emit(
                REQUEST_EXCEPTION,
                {**metadata, "outcome": "error", "status": status, "error_type": error_type_name(error)},
                measurements,
            )
            return CallResult.failure(error, status=status, elapsed_ms=elapsed)

        assert isinstance(result, StreamResponse)
        telemetry.emit(REQUEST_STOP, {**metadata, "outcome": "ok", "status": status}, measurements)
        events = EventStream(
            result,
            stream_format=endpoint.stream_format,
            event_types=endpoint.event_types,
            endpoint_id=endpoint.id,
        )
        return CallResult.success(events, status=status, elapsed_ms=elapsed, headers=dict(result.headers))

    # -- asynchronous endpoints ------------------------------------------

    async def submit(
        self,
        endpoint_id: str,
        payload: Any = None,
        options: CallOptions | None = None,
        poll_options: PollOptions | None = None,
    ) -> CallResult[PollHandle]:
        """Start a server-side async operation and begin polling it.

        Returns:
            CallResult whose value is a PollHandle for the operation

        Raises:
            UnknownEndpointError: If the endpoint id is not declared
            ConfigurationError: If the endpoint has no poll endpoint
        """
        from apiwire.futures.polling import PollOptions

        endpoint = self.manifest.fetch_endpoint(endpoint_id)
        if not endpoint.is_async or not endpoint.poll_endpoint:
            raise ConfigurationError(
                f"Endpoint {endpoint.id} is not asynchronous or declares no poll_endpoint",
                setting="poll_endpoint",
            )

        result = await self.execute(endpoint_id, payload, options)
        if not result.ok:
            return CallResult.failure(
                result.error, status=result.status, retry_count=result.retry_count, elapsed_ms=result.elapsed_ms
            )

        request_id = result.value.get("request_id") if isinstance(result.value, Mapping) else None
        if not request_id:
            error = DecodeError(f"Response of {endpoint.id} has no request_id", status=result.status, path="request_id")
            return CallResult.failure(error, status=result.status, elapsed_ms=result.elapsed_ms)

        if poll_options is None:
            poll_options = PollOptions(retrieve_endpoint=endpoint.poll_endpoint)
        elif poll_options.retrieve_endpoint is None:
            poll_options = poll_options.evolve(retrieve_endpoint=endpoint.poll_endpoint)

        handle = self.poller.poll(str(request_id), poll_options)
        return CallResult.success(
            handle,
            status=result.status,
            retry_count=result.retry_count,
            elapsed_ms=result.elapsed_ms,
            headers=result.headers,
        )


async def execute(
    manifest: Manifest,
    endpoint_id: str,
    payload: Any,
    context: Context,
    options: CallOptions | None = None,
) -> CallResult[Any]:
    """Functional form of ``RequestPipeline.execute``."""
    return await RequestPipeline(manifest, context).execute(endpoint_id, payload, options)
