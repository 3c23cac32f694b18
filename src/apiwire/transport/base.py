"""
Transport port.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from apiwire.core.request import Request, Response, StreamResponse


class Transport(ABC):
    """Sends a built Request and returns the Response.

    Implementations raise ``apiwire.errors.TimeoutError`` or
    ``apiwire.errors.ConnectionError`` for failures below HTTP; any status
    code, including 4xx and 5xx, is returned as a Response.
    """

    @abstractmethod
    async def send(self, request: Request) -> Response:
        """Send one request and read the full body."""

    async def stream(self, request: Request) -> StreamResponse:
        """Send one request and return the body as a chunk stream.

        Raises:
            NotImplementedError: If the transport cannot stream
        """
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")

    async def close(self) -> None:
        """Release pooled connections."""
        return None
