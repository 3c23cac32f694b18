"""
URL building: base URL, path-parameter substitution and query encoding.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, quote

from apiwire.core.querystring import ArrayFormat, NestedFormat, stringify


def apply_path_params(path: str, params: Mapping[str, Any] | None) -> str:
    """Substitute ``{name}`` and ``:name`` placeholders with encoded values.

    Example:
        >>> apply_path_params("/models/{id}/versions/:v", {"id": "a b", "v": 2})
        '/models/a%20b/versions/2'
    """
    # Longest names first so ":id" cannot clobber ":id_type".
    for key, value in sorted((params or {}).items(), key=lambda kv: -len(str(kv[0]))):
        encoded = quote(str(value), safe="")
        path = path.replace("{" + str(key) + "}", encoded).replace(":" + str(key), encoded)
    return path


def build_url(
    base_url: str | None,
    path: str,
    path_params: Mapping[str, Any] | None = None,
    query: Mapping[str, Any] | None = None,
    array_format: ArrayFormat | str = ArrayFormat.REPEAT,
    nested_format: NestedFormat | str = NestedFormat.BRACKETS,
) -> str:
    """Build a full request URL.

    A query string embedded in ``path`` is merged underneath ``query``;
    ``None`` values in ``query`` are dropped.

    Args:
        base_url: Scheme and host, trailing ``/`` ignored
        path: Path template, a leading ``/`` is added if missing
        path_params: Values for ``{name}``/``:name`` placeholders
        query: Query parameters
        array_format: List encoding, see ``apiwire.core.querystring``
        nested_format: Nested mapping encoding

    Returns:
        Absolute URL
    """
    base = (base_url or "").rstrip("/")
    path, _, embedded = path.partition("?")
    if not path.startswith("/"):
        path = "/" + path
    path = apply_path_params(path, path_params)

    merged: dict[str, Any] = dict(parse_qsl(embedded, keep_blank_values=True)) if embedded else {}
    merged.update({str(k): v for k, v in (query or {}).items() if v is not None})

    query_string = stringify(merged, array_format, nested_format)
    url = base + path
    return f"{url}?{query_string}" if query_string else url
