"""
Auth providers and API key resolution.

Keys are resolved from:
1. Explicit value
2. The manifest's ``auth.token_env`` variable
3. ``{NAME}_API_KEY``
4. System keyring (optional)
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from apiwire._features import HAS_KEYRING
from apiwire.errors import ConfigurationError
from apiwire.telemetry import get_logger

if TYPE_CHECKING:
    from apiwire.manifest.models import Manifest

logger = get_logger("apiwire.auth")

_KEYRING_SERVICE = "apiwire"


class AuthProvider(ABC):
    """Contributes headers to every request it is attached to.

    Providers run in order; a later provider may override an earlier one.
    """

    @abstractmethod
    def headers(self, options: dict[str, Any] | None = None) -> dict[str, str]:
        """Headers to add.

        Args:
            options: Per-call options (endpoint id, method), may be ignored

        Raises:
            ConfigurationError: If the credential cannot be produced
        """


class BearerAuth(AuthProvider):
    """``Authorization: Bearer <token>``."""

    def __init__(self, token: str, *, header_name: str = "authorization", prefix: str = "Bearer") -> None:
        self._token = token
        self._header_name = header_name
        self._prefix = prefix

    def headers(self, options: dict[str, Any] | None = None) -> dict[str, str]:
        if not self._token:
            raise ConfigurationError("Bearer token is empty", setting="auth")
        return {self._header_name: f"{self._prefix} {self._token}"}


class ApiKeyAuth(AuthProvider):
    """A raw key in a dedicated header, ``x-api-key`` by default."""

    def __init__(self, key: str, *, header_name: str = "x-api-key", prefix: str | None = None) -> None:
        self._key = key
        self._header_name = header_name
        self._prefix = prefix

    def headers(self, options: dict[str, Any] | None = None) -> dict[str, str]:
        if not self._key:
            raise ConfigurationError("API key is empty", setting="auth")
        value = f"{self._prefix} {self._key}" if self._prefix else self._key
        return {self._header_name: value}


class StaticHeadersAuth(AuthProvider):
    """Fixed headers, e.g. an organization or project id."""

    def __init__(self, headers: dict[str, str]) -> None:
        self._headers = dict(headers)

    def headers(self, options: dict[str, Any] | None = None) -> dict[str, str]:
        return dict(self._headers)


def resolve_api_key(
    name: str,
    manifest: Manifest | None = None,
    explicit_key: str | None = None,
) -> str | None:
    """Resolve an API key.

    Args:
        name: Manifest or service name, used for ``{NAME}_API_KEY``
        manifest: Optional manifest with auth configuration
        explicit_key: Explicitly provided key

    Returns:
        Resolved API key or None if not found
    """
    if explicit_key:
        return explicit_key

    if manifest and manifest.auth and manifest.auth.token_env:
        key = os.getenv(manifest.auth.token_env)
        if key:
            return key

    env_var = f"{name.upper().replace('-', '_').replace('.', '_')}_API_KEY"
    key = os.getenv(env_var)
    if key:
        return key

    return _try_keyring(name)


def _try_keyring(name: str) -> str | None:
    if not HAS_KEYRING:
        return None
    import keyring

    try:
        return keyring.get_password(_KEYRING_SERVICE, name)
    except Exception as exc:
        # Keyring backends fail in containers and headless sessions.
        logger.debug("Keyring lookup failed", service=_KEYRING_SERVICE, error=str(exc))
        return None


def auth_from_manifest(manifest: Manifest, api_key: str | None = None) -> list[AuthProvider]:
    """Build the auth provider list described by a manifest.

    Returns an empty list when the manifest declares no auth, declares
    ``type: none``, or no key can be resolved.
    """
    auth = manifest.auth
    if auth is None or auth.type.lower() == "none":
        return []

    key = resolve_api_key(manifest.name, manifest, api_key)
    if not key:
        logger.warning("No API key resolved", manifest=manifest.name)
        return []

    if auth.type.lower() == "api_key":
        return [ApiKeyAuth(key, header_name=(auth.header_name or "x-api-key").lower(), prefix=auth.prefix)]
    return [
        BearerAuth(
            key,
            header_name=(auth.header_name or "authorization").lower(),
            prefix=auth.prefix or "Bearer",
        )
    ]
