"""类型编译器：将清单类型定义编译为 JSON Schema 并校验实例。

Type compiler.

Compiles manifest type definitions into JSON Schema documents (one shared
``$defs`` table, recursion through ``$ref``) and validates or converts
individual instances with ``jsonschema``.
"""

from __future__ import annotations

from typing import Any

import jsonschema

from apiwire.errors import ValidationError
from apiwire.manifest.models import (
    AliasType,
    FieldSpec,
    Manifest,
    ObjectType,
    TypeDefinition,
    UnionType,
)
from apiwire.manifest.schema import format_path

_JSON_TYPES: dict[str, dict[str, Any]] = {
    "string": {"type": "string"},
    "integer": {"type": "integer"},
    "number": {"type": "number"},
    "float": {"type": "number"},
    "boolean": {"type": "boolean"},
    "map": {"type": "object"},
    "object": {"type": "object"},
    "null": {"type": "null"},
    "any": {},
}

_BOUNDS = (
    ("min_length", "minLength"),
    ("max_length", "maxLength"),
    ("min_items", "minItems"),
    ("max_items", "maxItems"),
    ("gt", "exclusiveMinimum"),
    ("gteq", "minimum"),
    ("lt", "exclusiveMaximum"),
    ("lteq", "maximum"),
)


def _ref(name: str) -> dict[str, Any]:
    return {"$ref": f"#/$defs/{name}"}


def field_schema(spec: FieldSpec, *, nullable: bool = True) -> dict[str, Any]:
    """Compile one field descriptor.

    Optional named fields also accept ``null``.
    """
    if spec.is_literal:
        schema: dict[str, Any] = {"const": spec.value}
    elif spec.type_ref:
        schema = _ref(spec.type_ref)
    elif spec.type == "array":
        schema = {"type": "array", "items": field_schema(spec.items, nullable=False) if spec.items else {}}
    else:
        schema = dict(_JSON_TYPES.get(spec.type, {}))

    for attr, keyword in _BOUNDS:
        bound = getattr(spec, attr)
        if bound is not None:
            schema[keyword] = bound
    if spec.choices is not None:
        schema["enum"] = list(spec.choices)
    if spec.format:
        schema["format"] = spec.format
    if spec.description:
        schema["description"] = spec.description

    if nullable and not spec.required and spec.name:
        return {"anyOf": [schema, {"type": "null"}]}
    return schema


def definition_schema(definition: TypeDefinition) -> dict[str, Any]:
    """Compile one type definition (without ``$defs``)."""
    if isinstance(definition, ObjectType):
        return {
            "type": "object",
            "properties": {
                spec.wire_name: field_schema(spec) for spec in definition.fields.values()
            },
            "required": [
                spec.wire_name
                for spec in definition.fields.values()
                if spec.required and not spec.has_default
            ],
        }

    if isinstance(definition, UnionType):
        tag = definition.discriminator
        return {
            "type": "object",
            "required": [tag],
            "properties": {tag: {"enum": list(definition.mapping)}},
            "allOf": [
                {
                    "if": {"properties": {tag: {"const": value}}, "required": [tag]},
                    "then": _ref(target),
                }
                for value, target in definition.mapping.items()
            ],
        }

    return field_schema(definition.target)


def compile_schema_defs(manifest: Manifest) -> dict[str, dict[str, Any]]:
    """Compile every type in the manifest into a ``$defs`` table."""
    return {name: definition_schema(d) for name, d in manifest.types.items()}


class TypeSchema:
    """A compiled, validating schema for one manifest type.

    Example:
        >>> schemas = compile_types(manifest)
        >>> schemas["Model"].validate({"id": "m-1"})
        >>> schemas["Model"].from_wire({"model_id": "m-1"})
        {'id': 'm-1'}
    """

    def __init__(
        self,
        name: str,
        definitions: dict[str, TypeDefinition],
        defs: dict[str, dict[str, Any]],
    ) -> None:
        self.name = name
        self._definitions = definitions
        self.document: dict[str, Any] = {
            "$schema": "https://json-schema.org/draft/2020-12/schema",
            "$defs": defs,
            **_ref(name),
        }
        self._validator = jsonschema.Draft202012Validator(
            self.document, format_checker=jsonschema.FormatChecker()
        )

    @property
    def definition(self) -> TypeDefinition:
        return self._definitions[self.name]

    def errors(self, instance: Any) -> list[tuple[str, str]]:
        """All violations as ``(path, message)`` pairs."""
        return [
            (format_path(tuple(error.absolute_path)), error.message)
            for error in sorted(self._validator.iter_errors(instance), key=lambda e: list(map(str, e.absolute_path)))
        ]

    def is_valid(self, instance: Any) -> bool:
        return self._validator.is_valid(instance)

    def validate(self, instance: Any) -> None:
        """Validate an instance in wire form.

        Raises:
            ValidationError: With every ``(path, message)`` violation
        """
        found = self.errors(instance)
        if found:
            raise ValidationError(f"{self.name} failed validation: {found[0][1]}", found)

    def to_wire(self, value: Any) -> Any:
        """Apply defaults and wire-name aliases, then validate."""
        wire = _convert(value, self.definition, self._definitions, outbound=True)
        self.validate(wire)
        return wire

    def from_wire(self, value: Any) -> Any:
        """Validate a wire value, then map wire names back and fill defaults."""
        self.validate(value)
        return _convert(value, self.definition, self._definitions, outbound=False)


def compile_types(manifest: Manifest) -> dict[str, TypeSchema]:
    """Compile every manifest type into a TypeSchema.

    Args:
        manifest: Loaded manifest

    Returns:
        Mapping of type name to compiled schema
    """
    defs = compile_schema_defs(manifest)
    definitions = dict(manifest.types)
    return {name: TypeSchema(name, definitions, defs) for name in definitions}


def _convert(
    value: Any,
    definition: TypeDefinition,
    definitions: dict[str, TypeDefinition],
    *,
    outbound: bool,
) -> Any:
    if isinstance(definition, UnionType):
        target = definition.resolve(value)
        if target and target != definition.name and target in definitions:
            return _convert(value, definitions[target], definitions, outbound=outbound)
        return value

    if isinstance(definition, AliasType):
        return _convert_field(value, definition.target, definitions, outbound=outbound)

    if not isinstance(value, dict):
        return value

    result: dict[str, Any] = {}
    known: set[str] = set()
    for spec in definition.fields.values():
        source, dest = (spec.name, spec.wire_name) if outbound else (spec.wire_name, spec.name)
        known.add(source)
        if source in value:
            result[dest] = _convert_field(value[source], spec, definitions, outbound=outbound)
        elif spec.has_default:
            result[dest] = spec.default
    for key, item in value.items():
        if key not in known:
            result[key] = item
    return result


def _convert_field(
    value: Any,
    spec: FieldSpec,
    definitions: dict[str, TypeDefinition],
    *,
    outbound: bool,
) -> Any:
    if value is None:
        return None
    if spec.type_ref and spec.type_ref in definitions:
        return _convert(value, definitions[spec.type_ref], definitions, outbound=outbound)
    if spec.type == "array" and spec.items is not None and isinstance(value, list):
        return [_convert_field(v, spec.items, definitions, outbound=outbound) for v in value]
    return value
