"""HTTP 传输层：基于 httpx 的异步 HTTP 客户端，按连接池键复用连接。

HTTP transport using httpx.

Provides:
- One pooled client per (base URL, pool type)
- Configurable timeouts via argument or APIWIRE_HTTP_TIMEOUT_SECS
- Proxy support (APIWIRE_PROXY_URL, only with APIWIRE_HTTP_TRUST_ENV=1)
- Streaming bodies for SSE and JSON Lines endpoints
"""

from __future__ import annotations

import os
from contextlib import suppress
from typing import Any

import httpx

from apiwire._features import HAS_HTTP2
from apiwire.core.request import Request, Response, StreamResponse
from apiwire.errors import ConnectionError, TimeoutError, TransportError
from apiwire.telemetry import get_logger
from apiwire.transport.base import Transport
from apiwire.transport.pool import ConnectionPool, PoolConfig

logger = get_logger("apiwire.transport.http")


def _http2_enabled() -> bool:
    """Enable HTTP/2 only when the optional dependency is present."""
    return HAS_HTTP2


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("APIWIRE_HTTP_TRUST_ENV", "0") == "1"


def _env_timeout() -> float | None:
    raw = os.getenv("APIWIRE_HTTP_TIMEOUT_SECS")
    if raw:
        with suppress(ValueError):
            return float(raw)
    return None


class HttpxTransport(Transport):
    """Transport backed by pooled ``httpx.AsyncClient`` instances.

    Example:
        >>> transport = HttpxTransport(timeout=30.0)
        >>> response = await transport.send(Request("GET", "https://api.example.com/ping"))
        >>> await transport.close()
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        proxy: str | None = None,
        pool: ConnectionPool | None = None,
        pool_configs: dict[str, PoolConfig] | None = None,
        httpx_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP transport.

        Args:
            timeout: Default request timeout in seconds
            proxy: Proxy URL
            pool: Pre-built connection pool (other pool args are ignored)
            pool_configs: Per pool-type configuration
            httpx_transport: Custom httpx transport for every pooled client
        """
        self._timeout = timeout if timeout is not None else _env_timeout()

        if proxy is None and _trust_env_enabled():
            proxy = os.getenv("APIWIRE_PROXY_URL")

        self._pool = pool or ConnectionPool(
            pool_configs,
            proxy=proxy,
            trust_env=_trust_env_enabled(),
            http2=_http2_enabled(),
            transport=httpx_transport,
        )

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def _timeout_for(self, request: Request) -> Any:
        seconds = request.timeout if request.timeout is not None else self._timeout
        return seconds if seconds is not None else httpx.USE_CLIENT_DEFAULT

    async def _client(self, request: Request) -> httpx.AsyncClient:
        try:
            return await self._pool.get_client(request.url, request.pool_type)
        except ValueError as e:
            raise TransportError(str(e), url=request.url, cause=e) from e

    def _map_error(self, e: httpx.HTTPError, request: Request) -> TransportError:
        if isinstance(e, httpx.TimeoutException):
            return TimeoutError(f"Request timed out: {e}", url=request.url, cause=e)
        if isinstance(e, (httpx.ConnectError, httpx.RemoteProtocolError, httpx.NetworkError)):
            return ConnectionError(f"Connection failed: {e}", url=request.url, cause=e)
        return TransportError(f"HTTP error: {e}", url=request.url, cause=e)

    async def send(self, request: Request) -> Response:
        """Send a request and read the whole body.

        Raises:
            TimeoutError: On connect/read/write/pool timeouts
            ConnectionError: On connection failures
            TransportError: On any other httpx failure
        """
        client = await self._client(request)
        try:
            response = await client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
                timeout=self._timeout_for(request),
            )
        except httpx.HTTPError as e:
            raise self._map_error(e, request) from e

        logger.debug(
            "HTTP response",
            method=request.method,
            url=request.url,
            status=response.status_code,
        )
        return Response(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def stream(self, request: Request) -> StreamResponse:
        """Send a request and hand back the body as a chunk stream.

        The caller owns the returned StreamResponse and must ``aclose`` it.
        """
        client = await self._client(request)
        try:
            http_request = client.build_request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
                timeout=self._timeout_for(request),
            )
            response = await client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise self._map_error(e, request) from e

        async def chunks() -> Any:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            except httpx.HTTPError as e:
                raise self._map_error(e, request) from e

        return StreamResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            chunks=chunks(),
            close_callback=response.aclose,
        )

    async def close(self) -> None:
        """Close all pooled clients."""
        await self._pool.close()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
