"""
Integration test helper utilities.

Shared fixtures for tests that drive ApiClient over a mocked httpx layer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from apiwire import ApiClient

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture(autouse=True)
def _no_ambient_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("EXAMPLE_TOKEN", raising=False)
    monkeypatch.setattr("apiwire.transport.auth._try_keyring", lambda name: None)


@pytest_asyncio.fixture
async def client(raw_manifest: dict[str, Any]) -> AsyncIterator[ApiClient]:
    """ApiClient over the sample manifest with the default httpx transport."""
    async with ApiClient.create(raw_manifest, api_key="sk-test", timeout=5.0) as api:
        yield api
