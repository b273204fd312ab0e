"""
Unit tests for YAML/JSON schema files.

Tests cover:
- Parsing entity types, fields and instances
- Validation error collection
- Building a registry from a document
- Loading files from disk
"""

import json

import pytest

from fieldstore.errors import SchemaFileError
from fieldstore.schema.loader import load_schema_file, parse_document, parse_field, parse_schema
from fieldstore.schema.types import CARDINALITY_UNLIMITED

ARTICLE_SCHEMA = """
version: 1
entity_types:
  - name: article
    base_table: article
    revision_table: article_revision
    keys: {id: id, uuid: uuid, revision: vid}
    fieldable: true
    base_fields:
      - {name: title, type: string, settings: {max_length: 128}}
fields:
  - name: body
    type: text_long
    entity_type: article
    uuid: 0b8c8c55-4fd8-4d55-8f1e-2f3f6f3c4b01
    indexes:
      value: [[value, 32]]
  - {name: tags, type: string, entity_type: article, cardinality: unlimited}
instances:
  - {field: body, entity_type: article, bundle: article, label: Body}
  - {field: tags, entity_type: article, bundle: article}
"""


class TestParsing:
    """Tests for document parsing."""

    def test_parse_schema(self):
        doc = parse_schema(ARTICLE_SCHEMA)

        assert [et.name for et in doc.entity_types] == ["article"]
        assert [f.name for f in doc.fields] == ["body", "tags"]
        assert doc.instances[0].label == "Body"
        assert doc.validate() == []

    def test_unlimited_cardinality(self):
        entry = parse_field({"name": "tags", "type": "string", "cardinality": "unlimited"})
        assert entry.to_definition().cardinality == CARDINALITY_UNLIMITED

    def test_field_indexes_become_tuples(self):
        doc = parse_schema(ARTICLE_SCHEMA)
        body = doc.fields[0].to_definition()
        assert body.indexes == {"value": (("value", 32),)}

    def test_invalid_yaml_raises(self):
        with pytest.raises(SchemaFileError, match="Invalid YAML"):
            parse_schema("entity_types: [unclosed")

    def test_document_must_be_mapping(self):
        with pytest.raises(SchemaFileError, match="mapping"):
            parse_document(["not", "a", "mapping"])

    def test_roundtrip_through_yaml(self):
        doc = parse_schema(ARTICLE_SCHEMA)
        assert parse_schema(doc.to_yaml()).to_dict() == doc.to_dict()


class TestValidation:
    """Tests for document validation."""

    def test_collects_all_errors(self):
        doc = parse_document({
            "entity_types": [{"name": "tag", "base_table": "tag"}],
            "fields": [
                {"name": "color", "type": "colour", "entity_type": "tag"},
                {"name": "weight", "type": "integer", "entity_type": "missing", "cardinality": 0},
            ],
            "instances": [{"field": "size", "entity_type": "tag", "bundle": "tag"}],
        })

        errors = doc.validate()

        assert any("invalid type 'colour'" in e for e in errors)
        assert any("not fieldable" in e for e in errors)
        assert any("unknown entity type 'missing'" in e for e in errors)
        assert any("cardinality must be positive" in e for e in errors)
        assert any("unknown field 'tag.size'" in e for e in errors)

    def test_unknown_entity_key(self):
        doc = parse_document({
            "entity_types": [{"name": "tag", "base_table": "tag", "keys": {"identifier": "tid"}}],
        })
        assert any("unknown keys" in e for e in doc.validate())

    def test_index_on_unknown_column(self):
        doc = parse_document({
            "entity_types": [{"name": "note", "base_table": "note", "fieldable": True}],
            "fields": [{
                "name": "body", "type": "text_long", "entity_type": "note",
                "indexes": {"summary": ["summary"]},
            }],
        })
        assert any("unknown column 'summary'" in e for e in doc.validate())

    def test_entity_type_definition_errors_reported(self):
        doc = parse_document({
            "entity_types": [{"name": "note", "base_table": "note", "keys": {"revision": "vid"}}],
        })
        assert any("revision_table" in e for e in doc.validate())

    def test_build_registry_raises_with_errors(self):
        doc = parse_document({"entity_types": [{"name": "", "base_table": ""}]})
        with pytest.raises(SchemaFileError) as exc_info:
            doc.build_registry()
        assert "Entity type name is required" in exc_info.value.errors


class TestBuildRegistry:
    """Tests for building registries from documents."""

    def test_build_registry(self):
        registry = parse_schema(ARTICLE_SCHEMA).build_registry()

        article = registry.get_entity_type("article")
        assert article.get_base_field("title").get_setting("max_length") == 128
        body = registry.get_field("article", "body")
        assert body.uuid == "0b8c8c55-4fd8-4d55-8f1e-2f3f6f3c4b01"
        assert registry.get_field("article", "tags").is_multiple
        assert registry.get_instance("article", "article", "body").label == "Body"
        assert not registry.frozen

    def test_generated_uuid_when_missing(self):
        registry = parse_schema(ARTICLE_SCHEMA).build_registry()
        assert registry.get_field("article", "tags").uuid


class TestLoadSchemaFile:
    """Tests for reading schema files."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "schema.yaml"
        path.write_text(ARTICLE_SCHEMA, encoding="utf-8")
        assert [f.name for f in load_schema_file(path).fields] == ["body", "tags"]

    def test_load_json(self, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text(parse_schema(ARTICLE_SCHEMA).to_json(), encoding="utf-8")
        assert load_schema_file(str(path)).validate() == []

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text(json.dumps({"entity_types": []})[:-1], encoding="utf-8")
        with pytest.raises(SchemaFileError, match="Invalid JSON"):
            load_schema_file(path)
