"""
Manifest meta-schema validation using JSON Schema.

Checks the top-level shape of a raw manifest before normalization.
Structural rules that need friendlier messages (endpoint ids, paths,
type kinds) are left to the loader so that all of them can be reported
together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import jsonschema

_STRING_MAP = {"type": "object", "additionalProperties": {"type": "string"}}

MANIFEST_META_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["name", "version", "endpoints"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string"},
        "base_url": {"type": ["string", "null"]},
        "auth": {"type": ["object", "null"]},
        "defaults": {"type": "object"},
        "error_types": {"type": "object"},
        "policies": {"type": "object"},
        "endpoints": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "method": {"type": "string"},
                    "path": {"type": "string"},
                    "resource": {"type": ["string", "null"]},
                    "request": {"type": ["string", "null"]},
                    "response": {"type": ["string", "null"]},
                    "async": {"type": "boolean"},
                    "streaming": {"type": "boolean"},
                    "idempotency": {"type": "boolean"},
                    "deprecated": {"type": "boolean"},
                    "timeout": {"type": ["integer", "null"], "minimum": 0},
                    "poll_endpoint": {"type": ["string", "null"]},
                    "response_unwrap": {"type": ["string", "null"]},
                    "stream_format": {"enum": ["sse", "json_lines"]},
                    "event_types": {"type": "array", "items": {"type": "string"}},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "headers": _STRING_MAP,
                    "query": {"type": "object"},
                },
            },
        },
        "types": {
            "type": "object",
            "additionalProperties": {"type": "object"},
        },
    },
}


@dataclass
class ValidationResult:
    """Result of manifest validation."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid

    def add_error(self, error: str) -> None:
        """Add an error."""
        self.errors.append(error)
        self.valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning."""
        self.warnings.append(warning)


class ManifestSchemaValidator:
    """Validates raw manifests against the meta-schema.

    Example:
        >>> validator = ManifestSchemaValidator()
        >>> result = validator.validate({"name": "x"})
        >>> result.errors
        ["'version' is a required property", "'endpoints' is a required property"]
    """

    def __init__(self, schema: dict[str, Any] | None = None) -> None:
        self._schema = schema or MANIFEST_META_SCHEMA
        jsonschema.Draft202012Validator.check_schema(self._schema)
        self._validator = jsonschema.Draft202012Validator(self._schema)

    def iter_errors(self, data: Any) -> list[tuple[tuple[Any, ...], str]]:
        """Every violation as ``(absolute_path, message)``, in path order."""
        found = [
            (tuple(error.absolute_path), error.message)
            for error in self._validator.iter_errors(data)
        ]
        return sorted(found, key=lambda e: [str(p) for p in e[0]])

    def validate(self, data: Any) -> ValidationResult:
        """Validate manifest data against the meta-schema.

        Args:
            data: Raw manifest data

        Returns:
            ValidationResult with valid flag and any errors
        """
        result = ValidationResult()
        for path, message in self.iter_errors(data):
            result.add_error(f"{format_path(path)}: {message}" if path else message)
        return result


def format_path(path: tuple[Any, ...]) -> str:
    """Render a JSON path like ``endpoints[0].path``."""
    out = ""
    for part in path:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out
