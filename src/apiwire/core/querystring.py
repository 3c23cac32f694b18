"""
Query string encoding with configurable array and nested-object formats.

Array formats for ``{"tags": ["a", "b"]}``:

- ``comma``: ``tags=a,b``
- ``repeat``: ``tags=a&tags=b``
- ``brackets``: ``tags[]=a&tags[]=b``
- ``indices``: ``tags[0]=a&tags[1]=b``

Nested formats for ``{"filter": {"state": "open"}}``:

- ``dots``: ``filter.state=open``
- ``brackets``: ``filter[state]=open``
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any
from urllib.parse import quote


class ArrayFormat(str, Enum):
    """How list values are spelled in a query string."""

    COMMA = "comma"
    REPEAT = "repeat"
    BRACKETS = "brackets"
    INDICES = "indices"


class NestedFormat(str, Enum):
    """How nested mapping keys are joined."""

    DOTS = "dots"
    BRACKETS = "brackets"


def _array_format(value: ArrayFormat | str | None) -> ArrayFormat:
    try:
        return ArrayFormat(str(value.value if isinstance(value, Enum) else value).lower())
    except ValueError:
        return ArrayFormat.REPEAT


def _nested_format(value: NestedFormat | str | None) -> NestedFormat:
    try:
        return NestedFormat(str(value.value if isinstance(value, Enum) else value).lower())
    except ValueError:
        return NestedFormat.BRACKETS


def _scalar(value: Any) -> str:
    if value is True:
        return "true"
    if value is False:
        return "false"
    return str(value)


def _is_scalar(value: Any) -> bool:
    return not isinstance(value, (Mapping, list, tuple))


def encode_pairs(
    params: Mapping[str, Any] | None,
    array_format: ArrayFormat | str = ArrayFormat.REPEAT,
    nested_format: NestedFormat | str = NestedFormat.BRACKETS,
) -> list[tuple[str, str]]:
    """Flatten parameters into ordered ``(key, value)`` pairs.

    Keys are sorted, ``None`` values dropped, booleans rendered as
    ``true``/``false``. ``comma`` falls back to ``repeat`` when a list holds
    non-scalar items.
    """
    if not params:
        return []
    arrays = _array_format(array_format)
    nested = _nested_format(nested_format)

    pairs: list[tuple[str, str]] = []
    for key in sorted(params, key=str):
        pairs.extend(_encode(str(key), params[key], arrays, nested))
    return pairs


def _encode(key: str, value: Any, arrays: ArrayFormat, nested: NestedFormat) -> list[tuple[str, str]]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        out: list[tuple[str, str]] = []
        for subkey in sorted(value, key=str):
            joined = f"{key}.{subkey}" if nested is NestedFormat.DOTS else f"{key}[{subkey}]"
            out.extend(_encode(joined, value[subkey], arrays, nested))
        return out

    if isinstance(value, (list, tuple)):
        items = [v for v in value if v is not None]
        if not items:
            return []
        if arrays is ArrayFormat.COMMA:
            if all(_is_scalar(v) for v in items):
                return [(key, ",".join(_scalar(v) for v in items))]
            arrays = ArrayFormat.REPEAT
        out = []
        for index, item in enumerate(items):
            if arrays is ArrayFormat.BRACKETS:
                item_key = f"{key}[]"
            elif arrays is ArrayFormat.INDICES:
                item_key = f"{key}[{index}]"
            else:
                item_key = key
            out.extend(_encode(item_key, item, arrays, nested))
        return out

    return [(key, _scalar(value))]


def stringify(
    params: Mapping[str, Any] | None,
    array_format: ArrayFormat | str = ArrayFormat.REPEAT,
    nested_format: NestedFormat | str = NestedFormat.BRACKETS,
) -> str:
    """Encode parameters as a query string (without the leading ``?``).

    Example:
        >>> stringify({"tags": ["a", "b"]}, array_format="indices")
        'tags[0]=a&tags[1]=b'
    """
    return "&".join(
        f"{quote(key, safe='[].')}={quote(value, safe=',')}"
        for key, value in encode_pairs(params, array_format, nested_format)
    )
