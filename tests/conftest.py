"""Root pytest fixtures for apiwire tests."""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from apiwire.core import Context, Request, Response, StreamResponse
from apiwire.manifest import Manifest, load_manifest
from apiwire.telemetry import RecordingTelemetry
from apiwire.transport import Transport

BASE_URL = "https://api.example.com/v1"


class FakeTransport(Transport):
    """Scripted transport that records every request.

    Each scripted item is a Response, a StreamResponse, an exception to
    raise, or a callable taking the Request and returning one of those
    (or an awaitable resolving to one).
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.requests: list[Request] = []
        self.closed = False

    def _next(self, request: Request) -> Any:
        self.requests.append(request)
        if not self.script:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        item = self.script.pop(0)
        if callable(item) and not isinstance(item, (Response, StreamResponse)):
            item = item(request)
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, request: Request) -> Response:
        item = self._next(request)
        if inspect.isawaitable(item):
            item = await item
        return item

    async def stream(self, request: Request) -> StreamResponse:
        item = self._next(request)
        if inspect.isawaitable(item):
            item = await item
        return item

    async def close(self) -> None:
        self.closed = True


def stream_response(
    chunks: list[bytes],
    status: int = 200,
    headers: dict[str, str] | None = None,
) -> StreamResponse:
    """StreamResponse yielding the given chunks; records when it is closed."""
    state = {"closed": False}

    async def gen() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk

    async def close() -> None:
        state["closed"] = True

    response = StreamResponse(
        status=status,
        headers=headers or {"content-type": "text/event-stream"},
        chunks=gen(),
        close_callback=close,
    )
    response.state = state  # type: ignore[attr-defined]
    return response


def raw_manifest_data() -> dict[str, Any]:
    return {
        "name": "example",
        "version": "1.0.0",
        "base_url": BASE_URL,
        "auth": {"type": "bearer", "token_env": "EXAMPLE_TOKEN"},
        "policies": {
            "retry": {
                "standard": {"max_retries": 3, "min_delay_ms": 1, "max_delay_ms": 1, "jitter": "none"},
            },
        },
        "endpoints": [
            {
                "id": "models.list",
                "method": "get",
                "path": "/models",
                "resource": "models",
                "response_unwrap": "data",
            },
            {
                "id": "models.get",
                "method": "GET",
                "path": "/models/{id}",
                "resource": "models",
                "response": "Model",
            },
            {
                "id": "jobs.create",
                "method": "POST",
                "path": "/jobs",
                "resource": "jobs",
                "request": "JobRequest",
                "idempotency": True,
                "retry": "standard",
            },
            {
                "id": "jobs.sample",
                "method": "POST",
                "path": "/sample",
                "resource": "jobs",
                "async": True,
                "poll_endpoint": "futures.retrieve",
            },
            {
                "id": "futures.retrieve",
                "method": "POST",
                "path": "/retrieve_future",
            },
            {
                "id": "completions.stream",
                "method": "POST",
                "path": "/completions",
                "streaming": True,
                "event_types": ["delta", "done"],
            },
        ],
        "types": {
            "Model": {
                "kind": "object",
                "fields": {
                    "id": {"type": "string", "required": True},
                    "display_name": {"type": "string", "alias": "displayName"},
                },
            },
            "JobRequest": {
                "fields": {
                    "input": {"type": "string", "required": True, "min_length": 1},
                    "priority": {"type": "integer", "default": 0, "gteq": 0},
                },
            },
        },
    }


@pytest.fixture
def raw_manifest() -> dict[str, Any]:
    """A valid raw manifest covering plain, idempotent, async and streaming endpoints."""
    return raw_manifest_data()


@pytest.fixture
def manifest(raw_manifest: dict[str, Any]) -> Manifest:
    return load_manifest(raw_manifest)


@pytest.fixture
def fake_transport() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture
def make_stream() -> Callable[..., StreamResponse]:
    return stream_response


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def make_context(manifest: Manifest, telemetry: RecordingTelemetry) -> Callable[..., Context]:
    """Factory for a Context over the sample manifest with a FakeTransport."""

    def make(*script: Any, **overrides: Any) -> Context:
        settings: dict[str, Any] = {
            "transport": FakeTransport(*script),
            "telemetry": telemetry,
            "platform_headers": False,
        }
        settings.update(overrides)
        return Context.from_manifest(manifest, **settings)

    return make
