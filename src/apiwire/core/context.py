"""上下文：每个客户端的不可变配置包。

Per-client configuration bundle.

A Context carries the injected ports (transport, serializer, auth,
resilience, telemetry), the compiled type schemas and default headers.
It is immutable and shared read-only by every concurrent call on a client.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from apiwire.core.querystring import ArrayFormat, NestedFormat
from apiwire.core.serializer import JsonSerializer, Serializer
from apiwire.errors import ConfigurationError
from apiwire.resilience import (
    CircuitBreaker,
    NoopCircuitBreaker,
    NoopRateLimiter,
    NoopRetry,
    RateLimiter,
    Retry,
    RetryConfig,
)
from apiwire.telemetry import NoopTelemetry, Telemetry

if TYPE_CHECKING:
    from apiwire.futures.cache import FutureResultCache
    from apiwire.manifest.models import Manifest
    from apiwire.manifest.types import TypeSchema
    from apiwire.transport.auth import AuthProvider
    from apiwire.transport.base import Transport

DEFAULT_AUTH_GROUP = "default"


def _new_cache() -> FutureResultCache:
    from apiwire.futures.cache import FutureResultCache

    return FutureResultCache()


def _new_owner_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Context:
    """Immutable bundle of ports and settings shared by all calls.

    Attributes:
        transport: Transport port (required to execute calls)
        base_url: Base URL requests are resolved against
        serializer: Body codec, JSON by default
        auth: Ordered auth providers, or a map of group name to providers
        retry: Retry port
        retry_config: Policy used when the endpoint names none
        retry_policies: Named retry policies referenced by endpoints
        circuit_breaker: Circuit breaker port
        rate_limiter: Rate limiter port
        telemetry: Telemetry port
        type_schemas: Compiled schemas by type name
        headers: Default headers layered over the built-in ones
        array_format: Default query array format
        nested_format: Default query nested-object format
        idempotency_header: Header carrying the idempotency key
        platform_headers: Send the x-apiwire-* platform and retry headers
        timeout_ms: Default request timeout
        owner_id: Identity used to scope the future result cache
        future_cache: Cache of completed future payloads

    Example:
        >>> ctx = Context.from_manifest(manifest, transport=HttpxTransport())
        >>> ctx.base_url
        'https://api.example.com/v1'
    """

    transport: Transport | None = None
    base_url: str | None = None
    serializer: Serializer = field(default_factory=JsonSerializer)
    auth: Sequence[AuthProvider] | Mapping[str, Sequence[AuthProvider]] = ()
    retry: Retry = field(default_factory=NoopRetry)
    retry_config: RetryConfig | None = None
    retry_policies: Mapping[str, RetryConfig] = field(default_factory=dict)
    circuit_breaker: CircuitBreaker = field(default_factory=NoopCircuitBreaker)
    rate_limiter: RateLimiter = field(default_factory=NoopRateLimiter)
    telemetry: Telemetry = field(default_factory=NoopTelemetry)
    type_schemas: Mapping[str, TypeSchema] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    array_format: ArrayFormat = ArrayFormat.REPEAT
    nested_format: NestedFormat = NestedFormat.BRACKETS
    idempotency_header: str = "Idempotency-Key"
    platform_headers: bool = True
    timeout_ms: int | None = None
    owner_id: str = field(default_factory=_new_owner_id)
    future_cache: FutureResultCache = field(default_factory=_new_cache)

    def __post_init__(self) -> None:
        # Freeze the mappings so no call can mutate shared configuration.
        object.__setattr__(self, "retry_policies", MappingProxyType(dict(self.retry_policies)))
        object.__setattr__(self, "type_schemas", MappingProxyType(dict(self.type_schemas)))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        if isinstance(self.auth, Mapping):
            groups = {name: tuple(providers) for name, providers in self.auth.items()}
            object.__setattr__(self, "auth", MappingProxyType(groups))
        else:
            object.__setattr__(self, "auth", tuple(self.auth))

    @classmethod
    def from_manifest(cls, manifest: Manifest, **overrides: Any) -> Context:
        """Build a Context with the manifest's types, base URL and policies.

        Args:
            manifest: Loaded manifest
            **overrides: Any Context field

        Returns:
            Context instance
        """
        from apiwire.manifest.types import compile_types

        retry_section = manifest.policies.get("retry") or {}
        settings: dict[str, Any] = {
            "base_url": manifest.base_url,
            "type_schemas": compile_types(manifest),
            "retry_policies": {name: RetryConfig.from_policy(p) for name, p in retry_section.items()},
            "timeout_ms": manifest.defaults.get("timeout"),
        }
        settings.update(overrides)
        return cls(**settings)

    def evolve(self, **changes: Any) -> Context:
        """Copy with some fields replaced."""
        return replace(self, **changes)

    def require_transport(self) -> Transport:
        """The transport port.

        Raises:
            ConfigurationError: If no transport was injected
        """
        if self.transport is None:
            raise ConfigurationError("Context has no transport", setting="transport")
        return self.transport

    def require_base_url(self) -> str:
        if not self.base_url:
            raise ConfigurationError("Context has no base_url", setting="base_url")
        return self.base_url

    def auth_for(self, group: str | None) -> tuple[AuthProvider, ...]:
        """Auth providers for a named group.

        A flat provider list applies to every endpoint. With grouped auth
        the endpoint's group is used, falling back to ``"default"``.
        """
        if isinstance(self.auth, Mapping):
            name = group or DEFAULT_AUTH_GROUP
            if name not in self.auth:
                if group is not None:
                    raise ConfigurationError(f"Unknown auth group: {group}", setting="auth")
                return ()
            return tuple(self.auth[name])
        return tuple(self.auth)

    def retry_policy(self, name: str | None) -> RetryConfig | None:
        """Named policy, or the context default.

        Raises:
            ConfigurationError: If the name is not registered
        """
        if name is None:
            return self.retry_config
        try:
            return self.retry_policies[name]
        except KeyError:
            raise ConfigurationError(f"Unknown retry policy: {name}", setting="retry") from None

    def schema(self, name: str | None) -> TypeSchema | None:
        if name is None:
            return None
        return self.type_schemas.get(name)
