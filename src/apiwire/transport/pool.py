"""
Connection pooling keyed by normalized base URL and pool type.

Every pool key follows the ``(normalized_base_url, pool_type)`` convention,
so requests to ``https://API.example.com:443/v1`` and
``https://api.example.com`` share connections.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from apiwire.telemetry import get_logger

logger = get_logger("apiwire.transport.pool")

POOL_TYPES = ("default", "streaming", "futures")

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_base_url(url: str) -> str:
    """Reduce a URL to ``scheme://host[:port]``.

    The host is lower-cased, default ports are dropped and any path is
    discarded.

    Raises:
        ValueError: If the URL has no scheme or host

    Example:
        >>> normalize_base_url("HTTPS://API.Example.com:443/v1/")
        'https://api.example.com'
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"invalid base_url for pool key: {url!r} (must have scheme and host)")
    scheme = parts.scheme.lower()
    port = parts.port
    suffix = "" if port is None or _DEFAULT_PORTS.get(scheme) == port else f":{port}"
    return f"{scheme}://{parts.hostname.lower()}{suffix}"


def pool_key(base_url: str, pool_type: str = "default") -> tuple[str, str]:
    """Pool key for a base URL and pool type."""
    return normalize_base_url(base_url), pool_type


def pool_name(base_pool: str, base_url: str, pool_type: str = "default") -> str:
    """Deterministic, readable name for a pool, e.g. for metrics labels."""
    digest = hashlib.sha1(normalize_base_url(base_url).encode()).hexdigest()[:10]
    return f"{base_pool}.{pool_type}.{digest}"


@dataclass
class PoolConfig:
    """Configuration for connection pools.

    Attributes:
        max_connections: Maximum total connections per pool
        max_keepalive_connections: Maximum idle connections to keep
        keepalive_expiry: Seconds before an idle connection expires
        connect_timeout: Connection timeout in seconds
        read_timeout: Read timeout in seconds
        write_timeout: Write timeout in seconds
        pool_timeout: Timeout waiting for an available connection
    """

    max_connections: int = 100
    max_keepalive_connections: int = 20
    keepalive_expiry: float = 30.0
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 60.0
    pool_timeout: float = 30.0

    @classmethod
    def default(cls) -> PoolConfig:
        return cls()

    @classmethod
    def streaming(cls) -> PoolConfig:
        """Long reads, few connections."""
        return cls(max_connections=20, max_keepalive_connections=10, read_timeout=300.0)

    @classmethod
    def futures(cls) -> PoolConfig:
        """Many short polls."""
        return cls(max_connections=50, max_keepalive_connections=50, keepalive_expiry=60.0, read_timeout=30.0)

    def to_httpx_limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections,
            keepalive_expiry=self.keepalive_expiry,
        )

    def to_httpx_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout,
        )


_TYPE_CONFIGS = {
    "default": PoolConfig.default,
    "streaming": PoolConfig.streaming,
    "futures": PoolConfig.futures,
}


class ConnectionPool:
    """One ``httpx.AsyncClient`` per pool key.

    Example:
        >>> pool = ConnectionPool()
        >>> client = await pool.get_client("https://api.example.com/v1", "streaming")
        >>> await pool.close()
    """

    def __init__(
        self,
        configs: dict[str, PoolConfig] | None = None,
        *,
        proxy: str | None = None,
        trust_env: bool = False,
        http2: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            configs: Per pool-type configuration, missing types use presets
            proxy: Proxy URL for all clients
            trust_env: Honour HTTP(S)_PROXY and friends
            http2: Enable HTTP/2 (requires the ``h2`` package)
            transport: Custom httpx transport, e.g. ``httpx.MockTransport``
        """
        self._configs = dict(configs or {})
        self._proxy = proxy
        self._trust_env = trust_env
        self._http2 = http2
        self._transport = transport
        self._clients: dict[tuple[str, str], httpx.AsyncClient] = {}
        self._lock = asyncio.Lock()

    def config_for(self, pool_type: str) -> PoolConfig:
        if pool_type in self._configs:
            return self._configs[pool_type]
        return _TYPE_CONFIGS.get(pool_type, PoolConfig.default)()

    async def get_client(self, url: str, pool_type: str = "default") -> httpx.AsyncClient:
        """Get or create the client for a URL's pool."""
        key = pool_key(url, pool_type)
        client = self._clients.get(key)
        if client is not None:
            return client
        async with self._lock:
            client = self._clients.get(key)
            if client is None:
                config = self.config_for(pool_type)
                client = httpx.AsyncClient(
                    limits=config.to_httpx_limits(),
                    timeout=config.to_httpx_timeout(),
                    proxy=self._proxy,
                    http2=self._http2,
                    trust_env=self._trust_env,
                    transport=self._transport,
                )
                self._clients[key] = client
                logger.debug("Created connection pool", destination=key[0], pool_type=pool_type)
        return client

    @property
    def keys(self) -> list[tuple[str, str]]:
        return list(self._clients)

    async def close(self) -> None:
        """Close every client."""
        async with self._lock:
            clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.aclose()
