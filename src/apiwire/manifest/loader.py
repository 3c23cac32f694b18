"""清单加载器：校验并规范化端点与类型定义，收集全部结构性错误。

Manifest loader.

Validates a raw manifest against the meta-schema, then normalizes every
endpoint and type definition, accumulating all structural errors before
failing. Supports dicts, JSON files and YAML files.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import ValidationError as PydanticValidationError

from apiwire.errors import ManifestValidationError
from apiwire.manifest.models import (
    AliasType,
    AuthConfig,
    Endpoint,
    FieldSpec,
    Manifest,
    ObjectType,
    TypeDefinition,
    UnionType,
)
from apiwire.manifest.schema import ManifestSchemaValidator, ValidationResult, format_path
from apiwire.telemetry import get_logger

logger = get_logger("apiwire.manifest")

T = TypeVar("T")

_FIELD_OPTIONS = (
    "min_length",
    "max_length",
    "min_items",
    "max_items",
    "gt",
    "gteq",
    "lt",
    "lteq",
    "format",
    "alias",
    "description",
)
_SCALAR_TYPES = frozenset(
    {"string", "integer", "float", "number", "boolean", "map", "object", "array", "literal", "any", "null"}
)
_TYPE_KINDS = frozenset({"object", "union", "alias"})


def _fmt_errors(exc: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
        for err in exc.errors()
    ]


class _Normalizer:
    """Accumulates errors while building endpoints and types."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def error(self, message: str) -> None:
        self.errors.append(message)

    # Endpoints

    def endpoints(self, raw_endpoints: list[Any], skip: set[int]) -> dict[str, Endpoint]:
        result: dict[str, Endpoint] = {}
        for index, raw in enumerate(raw_endpoints):
            if index in skip or not isinstance(raw, dict):
                continue
            endpoint = self.endpoint(raw, index)
            if endpoint is None:
                continue
            if endpoint.id in result:
                self.error(f"duplicate endpoint id: {endpoint.id}")
                continue
            result[endpoint.id] = endpoint
        return result

    def endpoint(self, raw: dict[str, Any], index: int) -> Endpoint | None:
        endpoint_id = raw.get("id")
        if not isinstance(endpoint_id, str) or not endpoint_id.strip():
            self.error(f"endpoints[{index}]: endpoint id is required")
            return None

        method = raw.get("method")
        path = raw.get("path")
        if not method or not path:
            self.error(f"endpoint {endpoint_id} must include method and path")
            return None
        if not str(path).startswith("/"):
            self.error(f"endpoint {endpoint_id} path must start with '/'")
            return None

        data = {**raw, "method": str(method).upper()}
        try:
            return Endpoint.model_validate(data)
        except PydanticValidationError as exc:
            for message in _fmt_errors(exc):
                self.error(f"endpoint {endpoint_id}: {message}")
            return None

    # Types

    def types(self, raw_types: dict[str, Any]) -> dict[str, TypeDefinition]:
        result: dict[str, TypeDefinition] = {}
        for name, raw in raw_types.items():
            if not isinstance(raw, dict):
                self.error(f"type {name} must be an object")
                continue
            definition = self.type_definition(name, raw)
            if definition is not None:
                result[name] = definition
        return result

    def type_definition(self, name: str, raw: dict[str, Any]) -> TypeDefinition | None:
        kind = self._kind(raw)
        if kind == "object":
            return self.object_type(name, raw)
        if kind == "union":
            return self.union_type(name, raw)
        if kind == "alias":
            target = self.field_spec(name, "", raw)
            if target is None:
                return None
            return self._make_type(name, AliasType, target=target, description=raw.get("description"))
        self.error(f"type {name} must include fields")
        return None

    @staticmethod
    def _kind(raw: dict[str, Any]) -> str | None:
        explicit = raw.get("kind")
        if isinstance(explicit, str) and explicit in _TYPE_KINDS:
            return explicit
        tag = raw.get("type")
        if tag in ("union", "object"):
            return tag
        if "fields" in raw:
            return "object"
        if any(k in raw for k in ("type", "type_ref", "value", "choices")):
            return "alias"
        return None

    def object_type(self, name: str, raw: dict[str, Any]) -> ObjectType | None:
        raw_fields = raw.get("fields")
        if not isinstance(raw_fields, dict):
            self.error(f"type {name} must include fields")
            return None
        fields: dict[str, FieldSpec] = {}
        for field_name, raw_field in raw_fields.items():
            spec = self.field_spec(name, field_name, raw_field)
            if spec is not None:
                fields[field_name] = spec
        return self._make_type(name, ObjectType, fields=fields, description=raw.get("description"))

    def union_type(self, name: str, raw: dict[str, Any]) -> UnionType | None:
        discriminator = raw.get("discriminator")
        field_name = "type"
        mapping: dict[str, str] = {}
        if isinstance(discriminator, str) and discriminator:
            field_name = discriminator
        elif isinstance(discriminator, dict):
            field_name = discriminator.get("field") or discriminator.get("property_name") or "type"
            explicit = discriminator.get("mapping")
            if isinstance(explicit, dict):
                mapping = {str(tag): str(target) for tag, target in explicit.items()}

        if not mapping:
            mapping = self._variant_mapping(name, raw.get("variants"))
        if not mapping:
            self.error(f"union {name} must declare variants or a discriminator mapping")
            return None
        return self._make_type(
            name,
            UnionType,
            discriminator=field_name,
            mapping=mapping,
            description=raw.get("description"),
        )

    def _make_type(self, name: str, model: type[T], **data: Any) -> T | None:
        try:
            return model(name=name, **data)
        except PydanticValidationError as exc:
            for message in _fmt_errors(exc):
                self.error(f"type {name}: {message}")
            return None

    def _variant_mapping(self, name: str, variants: Any) -> dict[str, str]:
        if isinstance(variants, dict):
            return {str(tag): str(target) for tag, target in variants.items()}
        mapping: dict[str, str] = {}
        if not isinstance(variants, list):
            return mapping
        for index, variant in enumerate(variants):
            if not isinstance(variant, dict):
                self.error(f"union {name} variant {index} must be an object")
                continue
            tag = next(
                (variant[k] for k in ("tag", "discriminator_value", "value") if k in variant),
                None,
            )
            target = variant.get("type_ref") or variant.get("type")
            if tag is None or not target:
                self.error(f"union {name} variant {index} must include a tag and a type")
                continue
            mapping[str(tag)] = str(target)
        return mapping

    def field_spec(self, owner: str, field_name: str, raw: Any) -> FieldSpec | None:
        where = f"type {owner}" + (f" field {field_name}" if field_name else "")
        if isinstance(raw, str):
            raw = {"type": raw}
        if not isinstance(raw, dict):
            self.error(f"{where} must be an object or a type name")
            return None

        data: dict[str, Any] = {"name": field_name}
        type_name = raw.get("type", "string")
        if "type_ref" in raw:
            data["type_ref"] = raw["type_ref"]
        elif isinstance(type_name, str) and type_name not in _SCALAR_TYPES:
            # Bare names of other manifest types are references.
            data["type_ref"] = type_name
        else:
            data["type"] = "number" if type_name == "float" else type_name

        if "value" in raw:
            data["type"] = "literal"
            data["value"] = raw["value"]
        if "choices" in raw:
            if not isinstance(raw["choices"], list) or not raw["choices"]:
                self.error(f"{where} choices must be a non-empty list")
                return None
            data["choices"] = tuple(raw["choices"])

        if "items" in raw:
            items = self.field_spec(owner, f"{field_name}[]" if field_name else "[]", raw["items"])
            if items is None:
                return None
            data["items"] = items
        elif data.get("type") == "array":
            data["items"] = FieldSpec(type="any")

        if "default" in raw:
            data["default"] = raw["default"]
        if "required" in raw:
            data["required"] = bool(raw["required"])
        elif "optional" in raw:
            data["required"] = not raw["optional"]
        for option in _FIELD_OPTIONS:
            if option in raw:
                data[option] = raw[option]

        try:
            return FieldSpec(**data)
        except PydanticValidationError as exc:
            for message in _fmt_errors(exc):
                self.error(f"{where}: {message}")
            return None

    # References

    def check_references(self, endpoints: dict[str, Endpoint], types: dict[str, TypeDefinition]) -> None:
        for endpoint in endpoints.values():
            for attr in ("request", "response"):
                ref = getattr(endpoint, attr)
                if ref and ref not in types:
                    self.error(f"endpoint {endpoint.id} {attr} references unknown type {ref}")
            if endpoint.poll_endpoint and endpoint.poll_endpoint not in endpoints:
                self.error(
                    f"endpoint {endpoint.id} poll_endpoint references unknown endpoint "
                    f"{endpoint.poll_endpoint}"
                )

        for definition in types.values():
            if isinstance(definition, UnionType):
                for tag, target in definition.mapping.items():
                    if target not in types:
                        self.error(f"union {definition.name} variant {tag} references unknown type {target}")
            elif isinstance(definition, ObjectType):
                for spec in definition.fields.values():
                    self._check_spec(definition.name, spec, types)
            else:
                self._check_spec(definition.name, definition.target, types)

    def _check_spec(self, owner: str, spec: FieldSpec, types: dict[str, TypeDefinition]) -> None:
        if spec.type_ref and spec.type_ref not in types:
            where = f"type {owner}" + (f" field {spec.name}" if spec.name else "")
            self.error(f"{where} references unknown type {spec.type_ref}")
        if spec.items is not None:
            self._check_spec(owner, spec.items, types)


def validate_manifest(raw: Any, validator: ManifestSchemaValidator | None = None) -> ValidationResult:
    """Validate a raw manifest without raising.

    Args:
        raw: Decoded JSON/YAML manifest
        validator: Meta-schema validator (a default one is created if None)

    Returns:
        ValidationResult listing every structural error
    """
    result = ValidationResult()
    _build(raw, validator or ManifestSchemaValidator(), result)
    return result


def load_manifest(raw: Any, validator: ManifestSchemaValidator | None = None) -> Manifest:
    """Load and normalize a raw manifest.

    Args:
        raw: Decoded JSON/YAML manifest
        validator: Meta-schema validator (a default one is created if None)

    Returns:
        Immutable Manifest

    Raises:
        ManifestValidationError: With every structural error found

    Example:
        >>> manifest = load_manifest({
        ...     "name": "demo", "version": "1",
        ...     "endpoints": [{"id": "ping", "method": "get", "path": "/ping"}],
        ... })
        >>> manifest.fetch_endpoint("ping").method
        'GET'
    """
    result = ValidationResult()
    manifest = _build(raw, validator or ManifestSchemaValidator(), result)
    if manifest is None or not result.valid:
        name = raw.get("name") if isinstance(raw, dict) else None
        raise ManifestValidationError(result.errors, manifest_name=name if isinstance(name, str) else None)
    logger.debug(
        "Manifest loaded",
        manifest=manifest.name,
        endpoints=len(manifest.endpoints),
        types=len(manifest.types),
    )
    return manifest


def _build(raw: Any, validator: ManifestSchemaValidator, result: ValidationResult) -> Manifest | None:
    if not isinstance(raw, dict):
        result.add_error("manifest must be an object")
        return None

    schema_errors = validator.iter_errors(raw)
    skip_endpoints: set[int] = set()
    for path, message in schema_errors:
        result.add_error(f"{format_path(path)}: {message}" if path else message)
        if len(path) >= 2 and path[0] == "endpoints" and isinstance(path[1], int):
            skip_endpoints.add(path[1])

    raw_endpoints = raw.get("endpoints")
    raw_types = raw.get("types") or {}
    normalizer = _Normalizer()
    endpoints = (
        normalizer.endpoints(raw_endpoints, skip_endpoints) if isinstance(raw_endpoints, list) else {}
    )
    types = normalizer.types(raw_types) if isinstance(raw_types, dict) else {}
    normalizer.check_references(endpoints, types)
    for message in normalizer.errors:
        result.add_error(message)

    if not result.valid:
        return None

    auth = raw.get("auth")
    try:
        return Manifest(
            name=raw["name"],
            version=raw["version"],
            base_url=raw.get("base_url"),
            auth=AuthConfig.model_validate(auth) if isinstance(auth, dict) else None,
            defaults=raw.get("defaults") or {},
            error_types=raw.get("error_types") or {},
            policies=raw.get("policies") or {},
            endpoints=endpoints,
            types=types,
        )
    except PydanticValidationError as exc:
        for message in _fmt_errors(exc):
            result.add_error(message)
        return None


def load_manifest_file(path: str | Path) -> Manifest:
    """Load a manifest from a ``.json``, ``.yaml`` or ``.yml`` file.

    Raises:
        ManifestValidationError: If the file cannot be parsed or is invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestValidationError([f"cannot read {path}: {exc}"]) from exc

    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            raw = json.loads(text)
        elif suffix in (".yaml", ".yml"):
            raw = yaml.safe_load(text)
        else:
            raise ManifestValidationError([f"unsupported manifest format: {suffix or path.name}"])
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ManifestValidationError([f"cannot parse {path.name}: {exc}"]) from exc
    return load_manifest(raw)


def fetch_endpoint(manifest: Manifest, endpoint_id: str) -> Endpoint:
    """Fail-fast endpoint lookup, see ``Manifest.fetch_endpoint``."""
    return manifest.fetch_endpoint(endpoint_id)
