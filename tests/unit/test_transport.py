"""Tests for the httpx transport, pooling and auth."""

import json
from typing import Any

import httpx
import pytest
from pytest_httpx import HTTPXMock

from apiwire.core import Request
from apiwire.errors import ConfigurationError, ConnectionError, TimeoutError, TransportError
from apiwire.manifest import Manifest, load_manifest
from apiwire.transport import (
    ApiKeyAuth,
    BearerAuth,
    ConnectionPool,
    HttpxTransport,
    PoolConfig,
    StaticHeadersAuth,
    auth_from_manifest,
    normalize_base_url,
    pool_key,
    pool_name,
    resolve_api_key,
)

URL = "https://api.example.com/v1/models"


class TestHttpxTransport:
    """Tests for HttpxTransport."""

    @pytest.mark.asyncio
    async def test_send(self, httpx_mock: HTTPXMock) -> None:
        """Test sending a request and reading the response."""
        httpx_mock.add_response(
            url=URL,
            method="POST",
            json={"id": "m-1"},
            headers={"X-Request-Id": "req-1"},
        )
        async with HttpxTransport() as transport:
            response = await transport.send(
                Request("POST", URL, headers={"x-test": "yes"}, body=b'{"a":1}', timeout=5.0)
            )

        assert response.status == 200
        assert response.ok
        assert response.header("X-Request-Id") == "req-1"
        assert json.loads(response.body) == {"id": "m-1"}
        sent = httpx_mock.get_request()
        assert sent is not None
        assert sent.headers["x-test"] == "yes"
        assert sent.content == b'{"a":1}'
        assert sent.extensions["timeout"]["read"] == 5.0

    @pytest.mark.asyncio
    async def test_error_status_returned(self, httpx_mock: HTTPXMock) -> None:
        """Test that non-2xx statuses are responses, not exceptions."""
        httpx_mock.add_response(status_code=503, json={"error": "busy"})
        async with HttpxTransport() as transport:
            response = await transport.send(Request("GET", URL))
        assert response.status == 503
        assert not response.ok

    @pytest.mark.asyncio
    async def test_timeout_mapped(self, httpx_mock: HTTPXMock) -> None:
        """Test that httpx timeouts become TimeoutError."""
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))
        async with HttpxTransport() as transport:
            with pytest.raises(TimeoutError) as exc_info:
                await transport.send(Request("GET", URL))
        assert exc_info.value.retryable
        assert exc_info.value.url == URL

    @pytest.mark.asyncio
    async def test_connect_error_mapped(self, httpx_mock: HTTPXMock) -> None:
        """Test that connection failures become ConnectionError."""
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        async with HttpxTransport() as transport:
            with pytest.raises(ConnectionError):
                await transport.send(Request("GET", URL))

    @pytest.mark.asyncio
    async def test_stream(self, httpx_mock: HTTPXMock) -> None:
        """Test streaming a body as chunks."""
        httpx_mock.add_response(
            url="https://api.example.com/v1/completions",
            content=b"data: a\n\ndata: b\n\n",
            headers={"Content-Type": "text/event-stream"},
        )
        async with HttpxTransport() as transport:
            streamed = await transport.stream(
                Request("POST", "https://api.example.com/v1/completions", pool_type="streaming")
            )
            body = await streamed.read()
            await streamed.aclose()
            keys = transport.pool.keys

        assert streamed.status == 200
        assert streamed.headers["content-type"] == "text/event-stream"
        assert body == b"data: a\n\ndata: b\n\n"
        assert keys == [("https://api.example.com", "streaming")]

    @pytest.mark.asyncio
    async def test_pools_by_base_url_and_type(self, httpx_mock: HTTPXMock) -> None:
        """Test that equivalent URLs share a pool and types do not."""
        httpx_mock.add_response(json={})
        httpx_mock.add_response(json={})
        httpx_mock.add_response(json={})
        transport = HttpxTransport()

        await transport.send(Request("GET", "https://API.example.com:443/v1/a"))
        await transport.send(Request("GET", "https://api.example.com/v2/b"))
        await transport.send(Request("POST", "https://api.example.com/v1/retrieve", pool_type="futures"))

        assert transport.pool.keys == [
            ("https://api.example.com", "default"),
            ("https://api.example.com", "futures"),
        ]
        await transport.close()
        assert transport.pool.keys == []

    @pytest.mark.asyncio
    async def test_relative_url_rejected(self) -> None:
        """Test that a URL without scheme and host is a TransportError."""
        transport = HttpxTransport()
        with pytest.raises(TransportError):
            await transport.send(Request("GET", "/models"))
        await transport.close()


class TestPooling:
    """Tests for pool keys and configuration."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("HTTPS://API.Example.com:443/v1/", "https://api.example.com"),
            ("http://localhost:80", "http://localhost"),
            ("http://localhost:8080/x", "http://localhost:8080"),
            ("https://api.example.com:8443", "https://api.example.com:8443"),
        ],
    )
    def test_normalize_base_url(self, url: str, expected: str) -> None:
        """Test host lower-casing and default port removal."""
        assert normalize_base_url(url) == expected

    def test_normalize_rejects_relative(self) -> None:
        """Test that URLs without a host are rejected."""
        with pytest.raises(ValueError):
            normalize_base_url("api.example.com/v1")

    def test_pool_key(self) -> None:
        """Test the (base URL, pool type) key."""
        assert pool_key("https://api.example.com/v1") == ("https://api.example.com", "default")

    def test_pool_name(self) -> None:
        """Test deterministic pool names."""
        name = pool_name("example", "https://api.example.com/v1", "streaming")
        assert name.startswith("example.streaming.")
        assert name == pool_name("example", "https://API.example.com:443", "streaming")
        assert name != pool_name("example", "https://other.example.com", "streaming")

    def test_type_presets(self) -> None:
        """Test per pool-type presets and overrides."""
        pool = ConnectionPool({"futures": PoolConfig(max_connections=3)})
        assert pool.config_for("streaming").read_timeout == 300.0
        assert pool.config_for("futures").max_connections == 3
        assert pool.config_for("other") == PoolConfig()


class TestAuthProviders:
    """Tests for auth providers."""

    def test_bearer(self) -> None:
        """Test the bearer header."""
        assert BearerAuth("tok").headers() == {"authorization": "Bearer tok"}

    def test_bearer_empty(self) -> None:
        """Test that an empty token is a configuration error."""
        with pytest.raises(ConfigurationError):
            BearerAuth("").headers()

    def test_api_key(self) -> None:
        """Test custom header and prefix."""
        auth = ApiKeyAuth("k", header_name="x-token", prefix="Token")
        assert auth.headers() == {"x-token": "Token k"}

    def test_static(self) -> None:
        """Test fixed headers."""
        assert StaticHeadersAuth({"x-org": "acme"}).headers({"endpoint_id": "x"}) == {"x-org": "acme"}


class TestResolveApiKey:
    """Tests for API key resolution order."""

    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("EXAMPLE_TOKEN", raising=False)
        monkeypatch.delenv("EXAMPLE_API_KEY", raising=False)
        monkeypatch.setattr("apiwire.transport.auth._try_keyring", lambda name: None)

    def test_explicit_wins(self, manifest: Manifest, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that an explicit key beats the environment."""
        monkeypatch.setenv("EXAMPLE_TOKEN", "env")
        assert resolve_api_key("example", manifest, "explicit") == "explicit"

    def test_token_env(self, manifest: Manifest, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the manifest's token_env variable."""
        monkeypatch.setenv("EXAMPLE_TOKEN", "from-token-env")
        monkeypatch.setenv("EXAMPLE_API_KEY", "from-name")
        assert resolve_api_key("example", manifest) == "from-token-env"

    def test_name_convention(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the {NAME}_API_KEY fallback."""
        monkeypatch.setenv("MY_SERVICE_API_KEY", "from-name")
        assert resolve_api_key("my-service") == "from-name"

    def test_keyring_last(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the keyring fallback."""
        monkeypatch.setattr("apiwire.transport.auth._try_keyring", lambda name: f"ring-{name}")
        assert resolve_api_key("example") == "ring-example"

    def test_nothing_found(self) -> None:
        """Test that None is returned when no source has a key."""
        assert resolve_api_key("example") is None


class TestAuthFromManifest:
    """Tests for auth_from_manifest."""

    @pytest.fixture(autouse=True)
    def _no_keyring(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("EXAMPLE_TOKEN", raising=False)
        monkeypatch.delenv("EXAMPLE_API_KEY", raising=False)
        monkeypatch.setattr("apiwire.transport.auth._try_keyring", lambda name: None)

    def _with_auth(self, raw_manifest: dict[str, Any], auth: dict[str, Any] | None) -> Manifest:
        raw_manifest["auth"] = auth
        return load_manifest(raw_manifest)

    def test_bearer(self, manifest: Manifest, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the default bearer provider."""
        monkeypatch.setenv("EXAMPLE_TOKEN", "tok")
        providers = auth_from_manifest(manifest)
        assert [p.headers() for p in providers] == [{"authorization": "Bearer tok"}]

    def test_api_key(self, raw_manifest: dict[str, Any]) -> None:
        """Test an api_key manifest with a custom header."""
        manifest = self._with_auth(raw_manifest, {"type": "api_key", "header_name": "X-Api-Token"})
        providers = auth_from_manifest(manifest, api_key="k")
        assert [p.headers() for p in providers] == [{"x-api-token": "k"}]

    def test_none_type(self, raw_manifest: dict[str, Any]) -> None:
        """Test that type none yields no providers."""
        manifest = self._with_auth(raw_manifest, {"type": "none"})
        assert auth_from_manifest(manifest, api_key="ignored") == []

    def test_no_auth_section(self, raw_manifest: dict[str, Any]) -> None:
        """Test that a manifest without auth yields no providers."""
        assert auth_from_manifest(self._with_auth(raw_manifest, None), api_key="k") == []

    def test_no_key_resolved(self, manifest: Manifest) -> None:
        """Test that an unresolvable key yields no providers."""
        assert auth_from_manifest(manifest) == []
