"""
Manifest loading, normalization and type compilation.
"""

from apiwire.manifest.loader import (
    fetch_endpoint,
    load_manifest,
    load_manifest_file,
    validate_manifest,
)
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
from apiwire.manifest.schema import (
    MANIFEST_META_SCHEMA,
    ManifestSchemaValidator,
    ValidationResult,
)
from apiwire.manifest.types import TypeSchema, compile_types

__all__ = [
    "AliasType",
    "AuthConfig",
    "Endpoint",
    "FieldSpec",
    "MANIFEST_META_SCHEMA",
    "Manifest",
    "ManifestSchemaValidator",
    "ObjectType",
    "TypeDefinition",
    "TypeSchema",
    "UnionType",
    "ValidationResult",
    "compile_types",
    "fetch_endpoint",
    "load_manifest",
    "load_manifest_file",
    "validate_manifest",
]
