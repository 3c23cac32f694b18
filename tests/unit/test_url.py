"""Tests for URL building and header layering."""

from apiwire.core import (
    apply_path_params,
    build_url,
    default_headers,
    merge_headers,
    normalize_headers,
    platform_headers,
    retry_headers,
)

BASE = "https://api.example.com/v1"


class TestPathParams:
    """Tests for path placeholder substitution."""

    def test_braces(self) -> None:
        """Test {name} placeholders."""
        assert apply_path_params("/models/{id}", {"id": "m-1"}) == "/models/m-1"

    def test_colon(self) -> None:
        """Test :name placeholders."""
        assert apply_path_params("/models/:id/versions/:v", {"id": "m", "v": 2}) == "/models/m/versions/2"

    def test_longer_names_first(self) -> None:
        """Test that a short name does not clobber a longer one."""
        path = apply_path_params("/x/:id/:id_type", {"id": "1", "id_type": "t"})
        assert path == "/x/1/t"

    def test_values_encoded(self) -> None:
        """Test that path values are fully percent-encoded."""
        assert apply_path_params("/files/{name}", {"name": "a b/c"}) == "/files/a%20b%2Fc"


class TestBuildUrl:
    """Tests for build_url."""

    def test_joins_base_and_path(self) -> None:
        """Test base URL joining with a trailing slash."""
        assert build_url(BASE + "/", "/models") == "https://api.example.com/v1/models"

    def test_adds_leading_slash(self) -> None:
        """Test that a relative path gets a leading slash."""
        assert build_url(BASE, "models") == "https://api.example.com/v1/models"

    def test_query(self) -> None:
        """Test query encoding and None dropping."""
        url = build_url(BASE, "/models", query={"limit": 10, "cursor": None})
        assert url == "https://api.example.com/v1/models?limit=10"

    def test_embedded_query_merged(self) -> None:
        """Test that an embedded query is merged underneath the given one."""
        url = build_url(BASE, "/search?sort=asc&limit=5", query={"limit": 10, "q": "x"})
        assert url == "https://api.example.com/v1/search?limit=10&q=x&sort=asc"

    def test_array_format(self) -> None:
        """Test that the array format is applied."""
        url = build_url(BASE, "/items/{id}", {"id": 7}, {"tags": ["a", "b"]}, array_format="comma")
        assert url == "https://api.example.com/v1/items/7?tags=a,b"


class TestHeaders:
    """Tests for header helpers."""

    def test_normalize(self) -> None:
        """Test lower-casing, stringifying and None dropping."""
        assert normalize_headers({"X-Count": 3, "X-Gone": None}) == {"x-count": "3"}

    def test_later_layers_win(self) -> None:
        """Test precedence regardless of name case."""
        merged = merge_headers({"Accept": "a", "X-One": "1"}, None, {"accept": "b"})
        assert merged == {"accept": "b", "x-one": "1"}

    def test_default_headers(self) -> None:
        """Test the built-in header set."""
        headers = default_headers()
        assert headers["accept"] == "application/json"
        assert headers["content-type"] == "application/json"
        assert headers["user-agent"].startswith("apiwire-python/")
        assert "content-type" not in default_headers(None)

    def test_platform_headers(self) -> None:
        """Test runtime description headers."""
        headers = platform_headers(package="1.2.3")
        assert headers["x-apiwire-package-version"] == "1.2.3"
        assert set(headers) == {
            "x-apiwire-os",
            "x-apiwire-arch",
            "x-apiwire-runtime",
            "x-apiwire-runtime-version",
            "x-apiwire-package-version",
        }

    def test_retry_headers(self) -> None:
        """Test per-attempt headers omit unknown values."""
        assert retry_headers(2, 5000) == {"x-apiwire-retry-count": "2", "x-apiwire-read-timeout": "5000"}
        assert retry_headers(0, None) == {"x-apiwire-retry-count": "0"}
