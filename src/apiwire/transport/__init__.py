"""
Transport layer for apiwire.

Provides the Transport port, the httpx adapter, connection pooling and
auth providers.
"""

from apiwire.transport.auth import (
    ApiKeyAuth,
    AuthProvider,
    BearerAuth,
    StaticHeadersAuth,
    auth_from_manifest,
    resolve_api_key,
)
from apiwire.transport.base import Transport
from apiwire.transport.http import HttpxTransport
from apiwire.transport.pool import (
    POOL_TYPES,
    ConnectionPool,
    PoolConfig,
    normalize_base_url,
    pool_key,
    pool_name,
)

__all__ = [
    "POOL_TYPES",
    "ApiKeyAuth",
    "AuthProvider",
    "BearerAuth",
    "ConnectionPool",
    "HttpxTransport",
    "PoolConfig",
    "StaticHeadersAuth",
    "Transport",
    "auth_from_manifest",
    "normalize_base_url",
    "pool_key",
    "pool_name",
    "resolve_api_key",
]
