"""
Manifest models.

These Pydantic models are the normalized, immutable form of a declarative
API description: endpoints keyed by id and type definitions keyed by name.
Instances are produced by ``apiwire.manifest.loader`` and never mutated.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from apiwire.errors import UnknownEndpointError


class AuthConfig(BaseModel):
    """Authentication configuration."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = Field(default="bearer", description="Auth type: bearer, api_key, none")
    token_env: str | None = Field(
        default=None, description="Environment variable holding the credential"
    )
    header_name: str | None = Field(
        default=None, description="Custom header name for api_key auth"
    )
    prefix: str | None = Field(default=None, description="Value prefix, e.g. 'Token'")


class FieldSpec(BaseModel):
    """One field of an object type, or the target of an alias.

    ``default`` and ``value`` are only meaningful when they were declared;
    use ``has_default`` and ``is_literal`` rather than comparing to None.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="", description="Field name as seen by callers")
    type: str = Field(default="string", description="Scalar type, 'array', or 'literal'")
    type_ref: str | None = Field(default=None, description="Name of another manifest type")
    items: FieldSpec | None = Field(default=None, description="Item descriptor for arrays")
    required: bool = Field(default=False, description="Whether the field must be present")
    default: Any = Field(default=None, description="Default applied when absent")
    value: Any = Field(default=None, description="Literal value")
    min_length: int | None = None
    max_length: int | None = None
    min_items: int | None = None
    max_items: int | None = None
    gt: float | None = None
    gteq: float | None = None
    lt: float | None = None
    lteq: float | None = None
    format: str | None = None
    choices: tuple[Any, ...] | None = None
    alias: str | None = Field(default=None, description="Name on the wire, if different")
    description: str | None = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set

    @property
    def is_literal(self) -> bool:
        return "value" in self.model_fields_set

    @property
    def wire_name(self) -> str:
        return self.alias or self.name


class ObjectType(BaseModel):
    """An object type with a field map."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["object"] = "object"
    name: str
    fields: dict[str, FieldSpec] = Field(default_factory=dict)
    description: str | None = None


class UnionType(BaseModel):
    """A discriminated union resolved by a tag field."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["union"] = "union"
    name: str
    discriminator: str = Field(default="type", description="Tag field name")
    mapping: dict[str, str] = Field(
        default_factory=dict, description="Tag value -> type name"
    )
    description: str | None = None

    def resolve(self, value: Any) -> str | None:
        """Return the variant type name for a tagged value, if any."""
        if isinstance(value, dict):
            tag = value.get(self.discriminator)
            if isinstance(tag, str):
                return self.mapping.get(tag)
        return None


class AliasType(BaseModel):
    """A named alias for a scalar, literal, array, choice set or other type."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["alias"] = "alias"
    name: str
    target: FieldSpec
    description: str | None = None


TypeDefinition = Union[ObjectType, UnionType, AliasType]


class Endpoint(BaseModel):
    """One callable operation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    method: str
    path: str
    resource: str | None = Field(default=None, description="Resource grouping")
    description: str | None = None
    request: str | None = Field(default=None, description="Request type name")
    response: str | None = Field(default=None, description="Response type name")
    is_async: bool = Field(default=False, alias="async", description="Returns a request id to poll")
    streaming: bool = False
    poll_endpoint: str | None = Field(default=None, description="Endpoint id used to retrieve results")
    timeout_ms: int | None = Field(default=None, alias="timeout")
    retry: str | None = Field(default=None, description="Named retry policy")
    circuit_breaker: str | None = Field(default=None, description="Circuit key override")
    rate_limit: str | None = Field(default=None, description="Rate-limit key override")
    idempotency: bool = False
    idempotency_header: str | None = None
    response_unwrap: str | None = Field(default=None, description="Dot path into the decoded body")
    stream_format: str = Field(default="sse", description="sse or json_lines")
    event_types: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    deprecated: bool = False
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    auth: str | None = Field(default=None, description="Named auth group")
    body_type: str = Field(default="json", description="json, raw or none")
    content_type: str | None = None

    @property
    def sends_idempotency_key(self) -> bool:
        return self.idempotency and self.method != "GET"

    @property
    def unwrap_path(self) -> list[str]:
        if not self.response_unwrap:
            return []
        return [p for p in self.response_unwrap.split(".") if p]


class Manifest(BaseModel):
    """Normalized API description.

    Example:
        >>> manifest = load_manifest(raw)
        >>> manifest.fetch_endpoint("models.list").method
        'GET'
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    base_url: str | None = None
    auth: AuthConfig | None = None
    defaults: dict[str, Any] = Field(default_factory=dict)
    error_types: dict[str, Any] = Field(default_factory=dict)
    policies: dict[str, Any] = Field(default_factory=dict)
    endpoints: dict[str, Endpoint] = Field(default_factory=dict)
    types: dict[str, TypeDefinition] = Field(default_factory=dict)

    def fetch_endpoint(self, endpoint_id: str) -> Endpoint:
        """Look up an endpoint by id.

        Raises:
            UnknownEndpointError: If the manifest does not declare it
        """
        try:
            return self.endpoints[endpoint_id]
        except KeyError:
            raise UnknownEndpointError(endpoint_id) from None

    def endpoints_for(self, resource: str) -> list[Endpoint]:
        """All endpoints grouped under a resource, in declaration order."""
        return [e for e in self.endpoints.values() if e.resource == resource]


FieldSpec.model_rebuild()
