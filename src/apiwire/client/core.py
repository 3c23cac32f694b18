"""核心客户端实现：清单驱动的统一 API 调用入口。

Core ApiClient implementation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from apiwire.client.builder import ApiClientBuilder
from apiwire.core.pipeline import CallOptions, RequestPipeline
from apiwire.futures.combine import combine
from apiwire.futures.polling import PollOptions
from apiwire.telemetry import get_logger, log_context

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path

    from apiwire.core.context import Context
    from apiwire.core.result import CallResult
    from apiwire.futures.polling import FutureResult, PollHandle
    from apiwire.manifest.models import Endpoint, Manifest
    from apiwire.streaming.stream import EventStream
    from apiwire.transport.base import Transport

logger = get_logger("apiwire.client")


class ApiClient:
    """Manifest-driven API client.

    ApiClient bundles a loaded manifest with a Context of injected ports
    and exposes the pipeline and the future engine.

    Example:
        >>> client = ApiClient.create("manifests/example.yaml", api_key="sk-...")
        >>> result = await client.call("models.get", path_params={"id": "m-1"})
        >>> model = result.unwrap()

        >>> # With resilience
        >>> client = (
        ...     ApiClient.builder()
        ...     .manifest("manifests/example.yaml")
        ...     .production_ready()
        ...     .build()
        ... )

        >>> # Streaming
        >>> result = await client.stream("completions.stream", {"prompt": "hi"})
        >>> async with result.unwrap() as events:
        ...     async for event in events:
        ...         print(event.data)

        >>> # Async operations
        >>> handle = (await client.submit("jobs.create", {"input": "x"})).unwrap()
        >>> outcome = await handle.wait(timeout=120)
    """

    def __init__(self, manifest: Manifest, context: Context) -> None:
        """Initialize the client (internal use).

        Use ApiClient.create() or ApiClientBuilder for public construction.
        """
        self._manifest = manifest
        self._context = context
        self._pipeline = RequestPipeline(manifest, context)
        self._poller = self._pipeline.poller
        self._closed = False

    @classmethod
    def create(
        cls,
        manifest: Manifest | Mapping[str, Any] | str | Path,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: Transport | None = None,
    ) -> ApiClient:
        """Create a client with default ports.

        Args:
            manifest: Loaded manifest, raw manifest mapping, or manifest file path
            api_key: Optional explicit API key
            base_url: Optional base URL override
            timeout: Optional timeout in seconds
            transport: Optional transport, HttpxTransport by default

        Returns:
            Configured ApiClient
        """
        builder = cls.builder().manifest(manifest)
        if api_key is not None:
            builder.api_key(api_key)
        if base_url is not None:
            builder.base_url(base_url)
        if timeout is not None:
            builder.timeout(timeout)
        if transport is not None:
            builder.transport(transport)
        return builder.build()

    @classmethod
    def builder(cls) -> ApiClientBuilder:
        """Get a builder for advanced configuration."""
        return ApiClientBuilder()

    @property
    def manifest(self) -> Manifest:
        return self._manifest

    @property
    def context(self) -> Context:
        return self._context

    @property
    def client_id(self) -> str:
        """Identity that scopes this client's cached future results."""
        return self._context.owner_id

    @property
    def pipeline(self) -> RequestPipeline:
        return self._pipeline

    def endpoint(self, endpoint_id: str) -> Endpoint:
        """Look up an endpoint, raising UnknownEndpointError if absent."""
        return self._manifest.fetch_endpoint(endpoint_id)

    @staticmethod
    def _options(options: CallOptions | None, overrides: dict[str, Any]) -> CallOptions | None:
        if not overrides:
            return options
        if options is not None:
            raise TypeError("Pass either options or keyword overrides, not both")
        return CallOptions(**overrides)

    async def call(
        self,
        endpoint_id: str,
        payload: Any = None,
        options: CallOptions | None = None,
        **overrides: Any,
    ) -> CallResult[Any]:
        """Execute one endpoint.

        Args:
            endpoint_id: Manifest endpoint id
            payload: Request payload
            options: Per-call options
            **overrides: CallOptions fields, as a shorthand for ``options``

        Returns:
            CallResult with the decoded value or a classified error
        """
        with log_context(client_id=self.client_id, endpoint_id=endpoint_id):
            return await self._pipeline.execute(endpoint_id, payload, self._options(options, overrides))

    async def stream(
        self,
        endpoint_id: str,
        payload: Any = None,
        options: CallOptions | None = None,
        **overrides: Any,
    ) -> CallResult[EventStream]:
        """Open a streaming endpoint; the value is an EventStream."""
        with log_context(client_id=self.client_id, endpoint_id=endpoint_id):
            return await self._pipeline.stream(endpoint_id, payload, self._options(options, overrides))

    async def submit(
        self,
        endpoint_id: str,
        payload: Any = None,
        options: CallOptions | None = None,
        poll_options: PollOptions | None = None,
        **overrides: Any,
    ) -> CallResult[PollHandle]:
        """Start an asynchronous endpoint; the value is a PollHandle."""
        with log_context(client_id=self.client_id, endpoint_id=endpoint_id):
            return await self._pipeline.submit(
                endpoint_id, payload, self._options(options, overrides), poll_options
            )

    def poll(
        self,
        request_id: str,
        options: PollOptions | None = None,
        *,
        retrieve_endpoint: str | None = None,
    ) -> PollHandle:
        """Poll an existing server-side request id.

        Args:
            request_id: Opaque id returned by the server
            options: Poll options
            retrieve_endpoint: Shorthand for ``PollOptions(retrieve_endpoint=...)``

        Returns:
            PollHandle, returned immediately
        """
        options = options or PollOptions()
        if retrieve_endpoint is not None:
            options = options.evolve(retrieve_endpoint=retrieve_endpoint)
        return self._poller.poll(request_id, options)

    async def combine(
        self,
        handles: Sequence[PollHandle],
        transform: Callable[[list[Any]], Any] | None = None,
        timeout: float | None = None,
    ) -> FutureResult:
        """Wait on several handles together, see ``apiwire.futures.combine``."""
        return await combine(handles, transform, timeout)

    async def close(self) -> None:
        """Cancel running poll sessions and release the transport's connections."""
        if self._closed:
            return
        self._closed = True
        cancelled = await self._poller.cancel_all()
        if cancelled:
            logger.debug("Cancelled poll sessions on close", client_id=self.client_id, sessions=cancelled)
        if self._context.transport is not None:
            await self._context.transport.close()
        logger.debug("Client closed", client_id=self.client_id)

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"ApiClient(manifest={self._manifest.name!r}, endpoints={len(self._manifest.endpoints)})"
