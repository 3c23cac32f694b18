"""
Header normalization, layering and platform telemetry headers.
"""

from __future__ import annotations

import platform
import sys
from collections.abc import Mapping
from typing import Any

_PACKAGE_VERSION: str | None = None


def package_version() -> str:
    """Installed package version, cached."""
    global _PACKAGE_VERSION
    if _PACKAGE_VERSION is None:
        try:
            from importlib.metadata import version

            _PACKAGE_VERSION = version("apiwire-python")
        except Exception:
            _PACKAGE_VERSION = "0.0.0"
    return _PACKAGE_VERSION


def normalize_headers(headers: Mapping[str, Any] | None) -> dict[str, str]:
    """Lower-case names, stringify values and drop ``None`` values."""
    return {
        str(name).lower(): str(value)
        for name, value in (headers or {}).items()
        if value is not None
    }


def merge_headers(*layers: Mapping[str, Any] | None) -> dict[str, str]:
    """Merge header layers, later layers winning.

    Example:
        >>> merge_headers({"Accept": "a"}, {"accept": "b"})
        {'accept': 'b'}
    """
    merged: dict[str, str] = {}
    for layer in layers:
        merged.update(normalize_headers(layer))
    return merged


def default_headers(content_type: str | None = "application/json") -> dict[str, str]:
    """Built-in headers every request starts from."""
    headers = {
        "accept": "application/json",
        "user-agent": f"apiwire-python/{package_version()}",
    }
    if content_type:
        headers["content-type"] = content_type
    return headers


def _detect_os() -> str:
    name = sys.platform
    if name == "darwin":
        return "MacOS"
    if name.startswith("linux"):
        return "Linux"
    if name in ("win32", "cygwin"):
        return "Windows"
    return name.capitalize()


def _detect_arch() -> str:
    machine = platform.machine().lower()
    if machine in ("aarch64", "arm64"):
        return "arm64"
    if machine in ("x86_64", "amd64"):
        return "x64"
    return machine or "unknown"


def platform_headers(package: str | None = None) -> dict[str, str]:
    """Runtime description headers (OS, architecture, interpreter, package)."""
    return {
        "x-apiwire-os": _detect_os(),
        "x-apiwire-arch": _detect_arch(),
        "x-apiwire-runtime": platform.python_implementation(),
        "x-apiwire-runtime-version": platform.python_version(),
        "x-apiwire-package-version": package or package_version(),
    }


def retry_headers(retry_count: int | None, timeout_ms: int | None) -> dict[str, str]:
    """Per-attempt headers; ``None`` values are left out."""
    headers: dict[str, str] = {}
    if retry_count is not None:
        headers["x-apiwire-retry-count"] = str(retry_count)
    if timeout_ms is not None:
        headers["x-apiwire-read-timeout"] = str(timeout_ms)
    return headers
