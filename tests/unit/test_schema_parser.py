"""
Tests unitarios para la lectura del schema del CMS ($ref, discriminadores).
"""
from __future__ import annotations

import pytest

from cms_mirror.infrastructure.external.cms_sync.schema_parser import (
    SchemaDocument,
    discriminator_of,
    parse_field_descriptor,
    parse_properties,
)
from cms_mirror.infrastructure.external.cms_sync.types import FieldDescriptor
from cms_mirror.shared.exceptions.sync import DiscoveryError


class TestSchemaDocument:
    """Tests para SchemaDocument."""

    def test_rejects_non_object_document(self) -> None:
        with pytest.raises(DiscoveryError):
            SchemaDocument(["no", "es", "objeto"])

    def test_rejects_document_without_definitions(self) -> None:
        with pytest.raises(DiscoveryError) as exc_info:
            SchemaDocument({"swagger": "2.0", "paths": {}})

        assert exc_info.value.error_code == "DISCOVERY_ERROR"

    def test_accepts_openapi3_components(self) -> None:
        doc = SchemaDocument(
            {
                "openapi": "3.0.0",
                "components": {
                    "schemas": {
                        "Schema_TagEntity": {"properties": {"label": {"type": "string"}}},
                    }
                },
            }
        )

        assert doc.definition_names == ["Schema_TagEntity"]
        assert doc.field_descriptors("TagEntity") == {
            "label": FieldDescriptor(name="label", type="string"),
        }

    def test_missing_definition_yields_empty_properties(self, schema_doc) -> None:
        doc = SchemaDocument(schema_doc)

        assert doc.properties_for("CommentEntity") == {}
        assert doc.field_descriptors("CommentEntity") == {}

    def test_cyclic_refs_are_resolved_one_hop(self, schema_doc) -> None:
        doc = SchemaDocument(schema_doc)

        page_fields = doc.field_descriptors("PageEntity")
        user_fields = doc.field_descriptors("UserEntity")

        assert page_fields["author"] == FieldDescriptor(name="author", type="object", refers_to="UserEntity")
        assert user_fields["authoredPages"] == FieldDescriptor(
            name="authoredPages", type="array", refers_to="PageEntity"
        )
        assert page_fields["title"].type == "string"

    def test_self_referencing_ref_does_not_loop(self) -> None:
        doc = SchemaDocument(
            {"definitions": {"Loop": {"$ref": "#/definitions/Loop"}}}
        )

        assert doc.resolve({"$ref": "#/definitions/Loop"}) is None

    def test_external_ref_is_not_followed(self) -> None:
        doc = SchemaDocument({"definitions": {}})

        assert doc.resolve({"$ref": "http://otro.host/schema.json#/A"}) is None

    def test_ref_chain_is_followed(self) -> None:
        doc = SchemaDocument(
            {
                "definitions": {
                    "Alias": {"$ref": "#/definitions/Real"},
                    "Real": {"type": "string"},
                }
            }
        )

        assert doc.resolve({"$ref": "#/definitions/Alias"}) == {"type": "string"}


class TestParseFieldDescriptor:
    """Tests para parse_field_descriptor()."""

    def test_inline_object_with_const_discriminator(self) -> None:
        raw = {
            "type": "object",
            "properties": {"id": {"type": "string"}, "type": {"const": "UserEntity"}},
        }

        descriptor = parse_field_descriptor("author", raw)

        assert descriptor == FieldDescriptor(name="author", type="object", refers_to="UserEntity")
        assert descriptor.is_reference is True
        assert descriptor.is_list is False

    def test_inline_array_with_single_value_enum(self) -> None:
        raw = {
            "type": "array",
            "items": {"properties": {"type": {"type": "string", "enum": ["PageEntity"]}}},
        }

        descriptor = parse_field_descriptor("pages", raw)

        assert descriptor.refers_to == "PageEntity"
        assert descriptor.is_list is True

    def test_object_without_discriminator(self) -> None:
        descriptor = parse_field_descriptor("meta", {"type": "object", "properties": {"a": {"type": "string"}}})

        assert descriptor.type == "object"
        assert descriptor.refers_to is None

    def test_nullable_type_list(self) -> None:
        descriptor = parse_field_descriptor("subtitle", {"type": ["string", "null"]})

        assert descriptor == FieldDescriptor(name="subtitle", type="string")

    def test_type_inferred_from_items(self) -> None:
        descriptor = parse_field_descriptor("tags", {"items": {"type": "string"}})

        assert descriptor.type == "array"
        assert descriptor.refers_to is None

    @pytest.mark.parametrize("raw", [None, "string", 3, {}, {"description": "sin tipo"}])
    def test_malformed_property_returns_none(self, raw) -> None:
        assert parse_field_descriptor("broken", raw) is None

    def test_parse_properties_skips_malformed(self) -> None:
        fields = parse_properties({"ok": {"type": "boolean"}, "broken": {"description": "x"}})

        assert list(fields.keys()) == ["ok"]


class TestDiscriminatorOf:
    """Tests para discriminator_of()."""

    def test_multi_value_enum_is_ambiguous(self) -> None:
        assert discriminator_of({"type": {"enum": ["A", "B"]}}) is None

    def test_non_mapping_properties(self) -> None:
        assert discriminator_of(None) is None
        assert discriminator_of(["type"]) is None
