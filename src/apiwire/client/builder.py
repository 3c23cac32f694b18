"""
Builder for fluent ApiClient construction.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from apiwire.core.context import Context
from apiwire.errors import ConfigurationError
from apiwire.manifest import Manifest, load_manifest, load_manifest_file
from apiwire.resilience import (
    BackoffRetry,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    RateLimiterConfig,
    RetryConfig,
    TokenBucketRateLimiter,
)
from apiwire.transport import HttpxTransport, auth_from_manifest

if TYPE_CHECKING:
    from collections.abc import Sequence

    from apiwire.client.core import ApiClient
    from apiwire.core.querystring import ArrayFormat, NestedFormat
    from apiwire.core.serializer import Serializer
    from apiwire.futures.cache import FutureResultCache
    from apiwire.resilience import CircuitBreaker, RateLimiter, Retry
    from apiwire.telemetry import Telemetry
    from apiwire.transport import AuthProvider, Transport


def breaker_overrides(section: Mapping[str, Any] | None) -> dict[str, CircuitBreakerConfig]:
    """Per-key circuit configs from a manifest ``policies.circuit_breaker`` map."""
    overrides: dict[str, CircuitBreakerConfig] = {}
    for name, policy in (section or {}).items():
        overrides[name] = CircuitBreakerConfig(
            failure_threshold=int(policy.get("failure_threshold", 5)),
            success_threshold=int(policy.get("success_threshold", 1)),
            cooldown_seconds=float(policy.get("cooldown_seconds", 30.0)),
        )
    return overrides


def limiter_overrides(section: Mapping[str, Any] | None) -> dict[str, RateLimiterConfig]:
    """Per-key bucket configs from a manifest ``policies.rate_limit`` map.

    Each entry gives ``rps`` or ``rpm``, optionally ``burst`` and
    ``max_wait_seconds``.
    """
    overrides: dict[str, RateLimiterConfig] = {}
    for name, policy in (section or {}).items():
        if "rpm" in policy:
            rps = float(policy["rpm"]) / 60.0
        else:
            rps = float(policy.get("rps", 0.0))
        burst = policy.get("burst")
        overrides[name] = RateLimiterConfig(
            requests_per_second=rps,
            burst_size=int(burst) if burst is not None else (max(1, int(rps * 1.5)) if rps > 0 else None),
            max_wait_seconds=policy.get("max_wait_seconds"),
        )
    return overrides


class ApiClientBuilder:
    """Builder for creating ApiClient instances with custom configuration.

    Ports left unset fall back to the pass-through defaults, except that
    retry, circuit breaking and rate limiting are switched on when the
    manifest declares policies for them.

    Example:
        >>> client = (
        ...     ApiClientBuilder()
        ...     .manifest("manifests/example.yaml")
        ...     .api_key("sk-...")
        ...     .retry(RetryConfig(max_retries=3))
        ...     .rate_limit(RateLimiterConfig.from_rps(10))
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        """Initialize the builder."""
        self._manifest: Manifest | Mapping[str, Any] | str | Path | None = None
        self._api_key: str | None = None
        self._base_url: str | None = None
        self._timeout: float | None = None
        self._transport: Transport | None = None
        self._serializer: Serializer | None = None
        self._auth: Sequence[AuthProvider] | Mapping[str, Sequence[AuthProvider]] | None = None
        self._headers: dict[str, str] = {}
        self._retry: Retry | None = None
        self._retry_config: RetryConfig | None = None
        self._circuit_breaker: CircuitBreaker | None = None
        self._breaker_config: CircuitBreakerConfig | None = None
        self._rate_limiter: RateLimiter | None = None
        self._limiter_config: RateLimiterConfig | None = None
        self._telemetry: Telemetry | None = None
        self._context_settings: dict[str, Any] = {}

    def manifest(self, manifest: Manifest | Mapping[str, Any] | str | Path) -> ApiClientBuilder:
        """Set the manifest: a loaded Manifest, a raw mapping, or a file path.

        Returns:
            Self for chaining
        """
        self._manifest = manifest
        return self

    def api_key(self, key: str) -> ApiClientBuilder:
        """Set explicit API key, used by manifest-declared auth."""
        self._api_key = key
        return self

    def base_url(self, url: str) -> ApiClientBuilder:
        """Override the manifest's base URL."""
        self._base_url = url
        return self

    def timeout(self, seconds: float) -> ApiClientBuilder:
        """Set the transport's default timeout in seconds."""
        self._timeout = seconds
        return self

    def transport(self, transport: Transport) -> ApiClientBuilder:
        """Use a custom transport instead of HttpxTransport."""
        self._transport = transport
        return self

    def serializer(self, serializer: Serializer) -> ApiClientBuilder:
        self._serializer = serializer
        return self

    def auth(
        self, providers: Sequence[AuthProvider] | Mapping[str, Sequence[AuthProvider]]
    ) -> ApiClientBuilder:
        """Replace manifest-derived auth with explicit providers or groups.

        Args:
            providers: Ordered providers, or a map of group name to providers

        Returns:
            Self for chaining
        """
        self._auth = providers
        return self

    def header(self, name: str, value: str) -> ApiClientBuilder:
        """Add a default header sent with every request."""
        self._headers[name.lower()] = value
        return self

    def retry(self, config: RetryConfig | Retry | None = None) -> ApiClientBuilder:
        """Enable retries with a config, or plug in a Retry port.

        Returns:
            Self for chaining
        """
        if config is None or isinstance(config, RetryConfig):
            self._retry_config = config or RetryConfig()
        else:
            self._retry = config
        return self

    def circuit_breaker(self, config: CircuitBreakerConfig | CircuitBreaker | None = None) -> ApiClientBuilder:
        """Enable circuit breaking with a config, or plug in a port."""
        if config is None or isinstance(config, CircuitBreakerConfig):
            self._breaker_config = config or CircuitBreakerConfig.from_env()
        else:
            self._circuit_breaker = config
        return self

    def rate_limit(self, config: RateLimiterConfig | RateLimiter | float) -> ApiClientBuilder:
        """Enable rate limiting with a config, a rate in requests/second, or a port."""
        if isinstance(config, (int, float)):
            self._limiter_config = RateLimiterConfig.from_rps(float(config))
        elif isinstance(config, RateLimiterConfig):
            self._limiter_config = config
        else:
            self._rate_limiter = config
        return self

    def telemetry(self, telemetry: Telemetry) -> ApiClientBuilder:
        self._telemetry = telemetry
        return self

    def query_format(
        self,
        array_format: ArrayFormat | str | None = None,
        nested_format: NestedFormat | str | None = None,
    ) -> ApiClientBuilder:
        """Set the default query encodings."""
        from apiwire.core.querystring import ArrayFormat, NestedFormat

        if array_format is not None:
            self._context_settings["array_format"] = ArrayFormat(array_format)
        if nested_format is not None:
            self._context_settings["nested_format"] = NestedFormat(nested_format)
        return self

    def idempotency_header(self, name: str) -> ApiClientBuilder:
        self._context_settings["idempotency_header"] = name
        return self

    def platform_headers(self, enable: bool = True) -> ApiClientBuilder:
        """Send or suppress the x-apiwire-* platform headers."""
        self._context_settings["platform_headers"] = enable
        return self

    def future_cache(self, cache: FutureResultCache) -> ApiClientBuilder:
        """Share a future result cache; results stay scoped per client."""
        self._context_settings["future_cache"] = cache
        return self

    def production_ready(self) -> ApiClientBuilder:
        """Enable retry, circuit breaking and environment-driven breaker settings."""
        if self._retry is None and self._retry_config is None:
            self.retry(RetryConfig(max_retries=3))
        if self._circuit_breaker is None and self._breaker_config is None:
            self.circuit_breaker()
        return self

    def _load_manifest(self) -> Manifest:
        source = self._manifest
        if source is None:
            raise ConfigurationError("Manifest must be set before building", setting="manifest")
        if isinstance(source, Manifest):
            return source
        if isinstance(source, (str, Path)):
            return load_manifest_file(source)
        return load_manifest(dict(source))

    def build_context(self, manifest: Manifest) -> Context:
        """Assemble the Context for a manifest from the configured ports."""
        policies = manifest.policies
        retry_policies = policies.get("retry") or {}

        retry = self._retry
        if retry is None and (self._retry_config is not None or retry_policies):
            retry = BackoffRetry(self._retry_config)

        circuit_breaker = self._circuit_breaker
        breaker_section = policies.get("circuit_breaker")
        if circuit_breaker is None and (self._breaker_config is not None or breaker_section):
            circuit_breaker = CircuitBreakerRegistry(
                self._breaker_config or CircuitBreakerConfig.from_env(),
                overrides=breaker_overrides(breaker_section),
            )

        rate_limiter = self._rate_limiter
        limiter_section = policies.get("rate_limit")
        if rate_limiter is None and (self._limiter_config is not None or limiter_section):
            rate_limiter = TokenBucketRateLimiter(
                self._limiter_config or RateLimiterConfig.unlimited(),
                overrides=limiter_overrides(limiter_section),
            )

        settings: dict[str, Any] = dict(self._context_settings)
        settings["transport"] = self._transport or HttpxTransport(timeout=self._timeout)
        settings["auth"] = self._auth if self._auth is not None else auth_from_manifest(manifest, self._api_key)
        settings["headers"] = dict(self._headers)
        if self._base_url is not None:
            settings["base_url"] = self._base_url
        if self._serializer is not None:
            settings["serializer"] = self._serializer
        if retry is not None:
            settings["retry"] = retry
        if self._retry_config is not None:
            settings["retry_config"] = self._retry_config
        if circuit_breaker is not None:
            settings["circuit_breaker"] = circuit_breaker
        if rate_limiter is not None:
            settings["rate_limiter"] = rate_limiter
        if self._telemetry is not None:
            settings["telemetry"] = self._telemetry

        return Context.from_manifest(manifest, **settings)

    def build(self) -> ApiClient:
        """Build the ApiClient instance.

        Returns:
            Configured ApiClient

        Raises:
            ConfigurationError: If no manifest was set
            ManifestValidationError: If the manifest is invalid
        """
        from apiwire.client.core import ApiClient

        manifest = self._load_manifest()
        return ApiClient(manifest, self.build_context(manifest))
