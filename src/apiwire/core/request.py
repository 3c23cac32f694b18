"""
Per-attempt request and response value objects.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Request:
    """One outgoing HTTP request.

    Attributes:
        method: Upper-case HTTP method
        url: Absolute URL including the query string
        headers: Lower-cased header map
        body: Encoded body, None for no body
        endpoint_id: Manifest endpoint this request belongs to
        timeout: Per-request timeout in seconds, None for the transport default
        pool_type: Connection pool bucket ("default", "streaming", "futures")
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    endpoint_id: str | None = None
    timeout: float | None = None
    pool_type: str = "default"

    def with_headers(self, headers: Mapping[str, str]) -> Request:
        """Copy with extra headers layered on top."""
        merged = {**self.headers, **{k.lower(): str(v) for k, v in headers.items()}}
        return dataclasses.replace(self, headers=merged)


@dataclass(frozen=True)
class Response:
    """One HTTP response with its body fully read."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", {k.lower(): v for k, v in self.headers.items()})

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    @classmethod
    def json_body(cls, status: int, payload: Any, headers: Mapping[str, str] | None = None) -> Response:
        """Build a JSON response, handy for fakes and tests."""
        return cls(
            status=status,
            headers={"content-type": "application/json", **(headers or {})},
            body=json.dumps(payload).encode(),
        )


@dataclass
class StreamResponse:
    """A response whose body arrives as chunks.

    ``chunks`` may be iterated once; ``aclose`` releases the connection.
    """

    status: int
    headers: dict[str, str]
    chunks: AsyncIterator[bytes]
    close_callback: Callable[[], Awaitable[None]] | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def read(self) -> bytes:
        """Drain the remaining body."""
        return b"".join([chunk async for chunk in self.chunks])

    async def aclose(self) -> None:
        if self.close_callback is not None:
            callback, self.close_callback = self.close_callback, None
            await callback()
