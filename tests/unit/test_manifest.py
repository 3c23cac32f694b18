"""Tests for manifest loading and normalization."""

import json
from typing import Any

import pytest
import yaml
from pydantic import ValidationError as PydanticValidationError

from apiwire.errors import ManifestValidationError, UnknownEndpointError
from apiwire.manifest import (
    AliasType,
    Manifest,
    ManifestSchemaValidator,
    ObjectType,
    UnionType,
    fetch_endpoint,
    load_manifest,
    load_manifest_file,
    validate_manifest,
)


def _errors(raw: Any) -> list[str]:
    with pytest.raises(ManifestValidationError) as exc_info:
        load_manifest(raw)
    return exc_info.value.manifest_errors


def _minimal(**extra: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "name": "mini",
        "version": "1",
        "endpoints": [{"id": "ping", "method": "get", "path": "/ping"}],
    }
    raw.update(extra)
    return raw


class TestLoadManifest:
    """Tests for load_manifest."""

    def test_loads_all_endpoints(self, manifest: Manifest) -> None:
        """Test that every declared endpoint is indexed by id."""
        assert len(manifest.endpoints) == 6
        assert manifest.name == "example"
        assert manifest.base_url == "https://api.example.com/v1"

    def test_method_is_upper_cased(self, manifest: Manifest) -> None:
        """Test that methods are normalized to upper case."""
        assert manifest.fetch_endpoint("models.list").method == "GET"

    def test_async_and_streaming_flags(self, manifest: Manifest) -> None:
        """Test endpoint flags and their aliases."""
        sample = manifest.fetch_endpoint("jobs.sample")
        assert sample.is_async is True
        assert sample.poll_endpoint == "futures.retrieve"

        stream = manifest.fetch_endpoint("completions.stream")
        assert stream.streaming is True
        assert stream.stream_format == "sse"
        assert stream.event_types == ("delta", "done")

    def test_unwrap_path(self, manifest: Manifest) -> None:
        """Test response_unwrap splitting."""
        assert manifest.fetch_endpoint("models.list").unwrap_path == ["data"]
        assert manifest.fetch_endpoint("models.get").unwrap_path == []

    def test_endpoints_for_resource(self, manifest: Manifest) -> None:
        """Test grouping endpoints by resource."""
        ids = [e.id for e in manifest.endpoints_for("jobs")]
        assert ids == ["jobs.create", "jobs.sample"]

    def test_manifest_is_immutable(self, manifest: Manifest) -> None:
        """Test that the loaded manifest cannot be mutated."""
        with pytest.raises(PydanticValidationError):
            manifest.name = "other"  # type: ignore[misc]

    def test_non_object_input(self) -> None:
        """Test that a non-mapping manifest is rejected."""
        assert _errors(["not", "a", "manifest"]) == ["manifest must be an object"]

    def test_missing_top_level_fields(self) -> None:
        """Test meta-schema errors for missing required keys."""
        errors = _errors({"name": "x"})
        assert "'version' is a required property" in errors
        assert "'endpoints' is a required property" in errors

    def test_accumulates_every_error(self, raw_manifest: dict[str, Any]) -> None:
        """Test that all structural errors are reported together."""
        raw_manifest["endpoints"].append({"id": "broken", "method": "GET"})
        raw_manifest["endpoints"].append({"id": "relative", "method": "GET", "path": "models"})
        raw_manifest["endpoints"].append({"method": "GET", "path": "/anonymous"})

        errors = _errors(raw_manifest)

        assert "endpoint broken must include method and path" in errors
        assert "endpoint relative path must start with '/'" in errors
        assert "endpoints[8]: endpoint id is required" in errors
        assert len(errors) == 3

    def test_duplicate_endpoint_id(self, raw_manifest: dict[str, Any]) -> None:
        """Test that a repeated endpoint id is an error."""
        raw_manifest["endpoints"].append({"id": "models.list", "method": "GET", "path": "/again"})
        assert "duplicate endpoint id: models.list" in _errors(raw_manifest)

    def test_schema_type_errors_carry_path(self, raw_manifest: dict[str, Any]) -> None:
        """Test that meta-schema violations are reported with their JSON path."""
        raw_manifest["endpoints"][0]["async"] = "yes"
        errors = _errors(raw_manifest)
        assert "endpoints[0].async: 'yes' is not of type 'boolean'" in errors

    def test_unknown_stream_format(self, raw_manifest: dict[str, Any]) -> None:
        """Test that stream_format is restricted to known decoders."""
        raw_manifest["endpoints"][5]["stream_format"] = "xml"
        errors = _errors(raw_manifest)
        assert any(e.startswith("endpoints[5].stream_format") for e in errors)

    def test_error_summary_in_message(self, raw_manifest: dict[str, Any]) -> None:
        """Test that the exception message summarizes the errors."""
        for index in range(5):
            raw_manifest["endpoints"].append({"id": f"bad{index}", "method": "GET"})
        with pytest.raises(ManifestValidationError) as exc_info:
            load_manifest(raw_manifest)
        assert "(+2 more)" in str(exc_info.value)
        assert exc_info.value.context.details["manifest"] == "example"


class TestTypeDefinitions:
    """Tests for type normalization."""

    def test_object_fields(self, manifest: Manifest) -> None:
        """Test object type field descriptors."""
        model = manifest.types["Model"]
        assert isinstance(model, ObjectType)
        assert model.fields["id"].required is True
        assert model.fields["display_name"].wire_name == "displayName"

    def test_default_is_tracked(self, manifest: Manifest) -> None:
        """Test that declared defaults are distinguishable from absent ones."""
        fields = manifest.types["JobRequest"].fields  # type: ignore[union-attr]
        assert fields["priority"].has_default is True
        assert fields["priority"].default == 0
        assert fields["input"].has_default is False

    def test_type_without_fields(self) -> None:
        """Test that a type with no recognizable shape is rejected."""
        errors = _errors(_minimal(types={"Empty": {"description": "nothing here"}}))
        assert errors == ["type Empty must include fields"]

    def test_non_string_kind(self) -> None:
        """Test that a non-string kind falls back to shape detection."""
        result = validate_manifest(_minimal(types={"T": {"kind": ["object"], "fields": {}}}))
        assert result.valid
        assert isinstance(load_manifest(_minimal(types={"T": {"kind": ["object"], "fields": {}}})).types["T"], ObjectType)

    def test_non_string_discriminator_field(self) -> None:
        """Test that a bad discriminator field is an accumulated error."""
        raw = _minimal(
            types={
                "A": {"fields": {"id": "string"}},
                "U": {"kind": "union", "discriminator": {"field": 5}, "variants": {"a": "A"}},
            }
        )
        result = validate_manifest(raw)
        assert not result.valid
        assert any(e.startswith("type U: discriminator") for e in result.errors)

    @pytest.mark.parametrize(
        "definition",
        [
            {"fields": {}, "description": 7},
            {"type": "string", "description": ["x"]},
            {"kind": "union", "variants": {"a": "A"}, "description": {"n": 1}},
        ],
    )
    def test_non_string_description(self, definition: dict[str, Any]) -> None:
        """Test that a non-string description is reported, not raised."""
        raw = _minimal(types={"A": {"fields": {"id": "string"}}, "T": definition})
        errors = _errors(raw)
        assert any(e.startswith("type T: description") for e in errors)

    def test_alias_type(self) -> None:
        """Test alias types for scalars with choices."""
        manifest = load_manifest(_minimal(types={"Color": {"type": "string", "choices": ["red", "blue"]}}))
        color = manifest.types["Color"]
        assert isinstance(color, AliasType)
        assert color.target.choices == ("red", "blue")

    def test_bare_type_name_is_reference(self) -> None:
        """Test that a field typed with another type's name becomes a reference."""
        raw = _minimal(
            types={
                "Item": {"fields": {"id": "string"}},
                "Page": {"fields": {"items": {"type": "array", "items": "Item"}, "next": "string"}},
            }
        )
        page = load_manifest(raw).types["Page"]
        assert isinstance(page, ObjectType)
        assert page.fields["items"].items is not None
        assert page.fields["items"].items.type_ref == "Item"
        assert page.fields["next"].type == "string"

    def test_union_from_variant_list(self) -> None:
        """Test discriminator mapping derived from a variants list."""
        raw = _minimal(
            types={
                "Created": {"fields": {"id": "string"}},
                "Deleted": {"fields": {"id": "string"}},
                "Event": {
                    "kind": "union",
                    "discriminator": "type",
                    "variants": [
                        {"tag": "created", "type_ref": "Created"},
                        {"tag": "deleted", "type": "Deleted"},
                    ],
                },
            }
        )
        event = load_manifest(raw).types["Event"]
        assert isinstance(event, UnionType)
        assert event.mapping == {"created": "Created", "deleted": "Deleted"}
        assert event.resolve({"type": "deleted"}) == "Deleted"
        assert event.resolve({"type": "other"}) is None

    def test_explicit_mapping_wins(self) -> None:
        """Test that an explicit discriminator mapping overrides variants."""
        raw = _minimal(
            types={
                "Created": {"fields": {"id": "string"}},
                "Deleted": {"fields": {"id": "string"}},
                "Event": {
                    "kind": "union",
                    "discriminator": {"field": "kind", "mapping": {"new": "Created"}},
                    "variants": [{"tag": "deleted", "type_ref": "Deleted"}],
                },
            }
        )
        event = load_manifest(raw).types["Event"]
        assert isinstance(event, UnionType)
        assert event.discriminator == "kind"
        assert event.mapping == {"new": "Created"}

    def test_union_without_variants(self) -> None:
        """Test that a union needs variants or a mapping."""
        errors = _errors(_minimal(types={"Event": {"kind": "union"}}))
        assert errors == ["union Event must declare variants or a discriminator mapping"]


class TestReferences:
    """Tests for dangling reference detection."""

    def test_unknown_response_type(self, raw_manifest: dict[str, Any]) -> None:
        """Test endpoint request/response references."""
        raw_manifest["endpoints"][1]["response"] = "Missing"
        errors = _errors(raw_manifest)
        assert "endpoint models.get response references unknown type Missing" in errors

    def test_unknown_poll_endpoint(self, raw_manifest: dict[str, Any]) -> None:
        """Test poll_endpoint references."""
        raw_manifest["endpoints"][3]["poll_endpoint"] = "futures.nowhere"
        errors = _errors(raw_manifest)
        assert (
            "endpoint jobs.sample poll_endpoint references unknown endpoint futures.nowhere" in errors
        )

    def test_unknown_field_and_variant_types(self) -> None:
        """Test field and union variant references."""
        raw = _minimal(
            types={
                "Page": {"fields": {"items": {"type": "array", "items": "Ghost"}}},
                "Event": {"kind": "union", "variants": {"created": "Phantom"}},
            }
        )
        errors = _errors(raw)
        assert "type Page field items[] references unknown type Ghost" in errors
        assert "union Event variant created references unknown type Phantom" in errors


class TestFetchEndpoint:
    """Tests for endpoint lookup."""

    def test_fetch_known(self, manifest: Manifest) -> None:
        """Test lookup by id."""
        assert fetch_endpoint(manifest, "models.get").path == "/models/{id}"

    def test_fetch_unknown_raises(self, manifest: Manifest) -> None:
        """Test that unknown ids fail fast."""
        with pytest.raises(UnknownEndpointError) as exc_info:
            manifest.fetch_endpoint("models.delete")
        assert exc_info.value.endpoint_id == "models.delete"
        assert str(exc_info.value).startswith("unknown endpoint: models.delete")

    def test_unknown_is_key_error(self, manifest: Manifest) -> None:
        """Test that UnknownEndpointError can be caught as KeyError."""
        with pytest.raises(KeyError):
            manifest.fetch_endpoint("nope")


class TestManifestFiles:
    """Tests for loading manifests from disk."""

    def test_yaml_file(self, tmp_path: Any, raw_manifest: dict[str, Any]) -> None:
        """Test loading a YAML manifest."""
        path = tmp_path / "example.yaml"
        path.write_text(yaml.safe_dump(raw_manifest), encoding="utf-8")
        manifest = load_manifest_file(path)
        assert set(manifest.endpoints) == {e["id"] for e in raw_manifest["endpoints"]}

    def test_json_file(self, tmp_path: Any, raw_manifest: dict[str, Any]) -> None:
        """Test loading a JSON manifest."""
        path = tmp_path / "example.json"
        path.write_text(json.dumps(raw_manifest), encoding="utf-8")
        assert load_manifest_file(str(path)).name == "example"

    def test_unsupported_extension(self, tmp_path: Any) -> None:
        """Test that unknown file formats are rejected."""
        path = tmp_path / "example.toml"
        path.write_text("name = 'x'", encoding="utf-8")
        with pytest.raises(ManifestValidationError) as exc_info:
            load_manifest_file(path)
        assert exc_info.value.manifest_errors == ["unsupported manifest format: .toml"]

    def test_unparseable_yaml(self, tmp_path: Any) -> None:
        """Test that parse failures become validation errors."""
        path = tmp_path / "broken.yml"
        path.write_text("name: [unclosed", encoding="utf-8")
        with pytest.raises(ManifestValidationError):
            load_manifest_file(path)

    def test_missing_file(self, tmp_path: Any) -> None:
        """Test that unreadable files become validation errors."""
        with pytest.raises(ManifestValidationError):
            load_manifest_file(tmp_path / "absent.yaml")


class TestValidateManifest:
    """Tests for non-raising validation."""

    def test_valid(self, raw_manifest: dict[str, Any]) -> None:
        """Test a valid manifest."""
        result = validate_manifest(raw_manifest)
        assert result
        assert result.errors == []

    def test_invalid(self) -> None:
        """Test an invalid manifest reports without raising."""
        result = validate_manifest({"name": "x", "version": "1", "endpoints": "nope"})
        assert not result.valid
        assert "endpoints: 'nope' is not of type 'array'" in result.errors

    def test_schema_validator_directly(self) -> None:
        """Test the meta-schema validator on its own."""
        result = ManifestSchemaValidator().validate({"name": "x"})
        assert not result.valid
        assert len(result.errors) == 2
