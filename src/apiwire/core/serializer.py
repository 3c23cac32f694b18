"""
Serializer port and the default JSON serializer.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from apiwire.errors import DecodeError, ValidationError

if TYPE_CHECKING:
    from apiwire.manifest.types import TypeSchema


class Serializer(ABC):
    """Encodes request payloads and decodes response bodies."""

    content_type: str = "application/octet-stream"

    @abstractmethod
    def encode(self, value: Any, hint: TypeSchema | None = None) -> bytes:
        """Encode a payload.

        Raises:
            ValidationError: If the value does not conform to ``hint`` or cannot be encoded
        """

    @abstractmethod
    def decode(self, data: bytes, hint: TypeSchema | None = None) -> Any:
        """Decode a body.

        Raises:
            DecodeError: If the bytes cannot be parsed
            ValidationError: If ``hint`` is given and the value does not conform
        """


class JsonSerializer(Serializer):
    """JSON via the standard library, with optional schema conversion.

    An empty body decodes to None.
    """

    content_type = "application/json"

    def __init__(self, *, ensure_ascii: bool = False) -> None:
        self._ensure_ascii = ensure_ascii

    def encode(self, value: Any, hint: TypeSchema | None = None) -> bytes:
        if hint is not None:
            value = hint.to_wire(value)
        try:
            return json.dumps(value, ensure_ascii=self._ensure_ascii, separators=(",", ":")).encode()
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Payload is not JSON serializable: {exc}", [("", str(exc))]) from exc

    def decode(self, data: bytes, hint: TypeSchema | None = None) -> Any:
        if not data or not data.strip():
            return None
        try:
            value = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(f"Invalid JSON body: {exc}", cause=exc) from exc
        if hint is not None:
            return hint.from_wire(value)
        return value
