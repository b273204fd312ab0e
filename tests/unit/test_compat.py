"""
Unit tests for field change detection.

Tests cover:
- Detection of breaking changes (type, columns)
- Detection of non-breaking changes (indexes, cardinality, settings)
- validate_field_update with and without data
- Registry-level comparison
"""

import pytest

from fieldstore.errors import SchemaChangeForbiddenError
from fieldstore.schema.compat import (
    ChangeKind,
    check_compatibility,
    check_field_compatibility,
    generate_fingerprint,
    validate_field_update,
)
from fieldstore.schema.field_types import register_field_type
from fieldstore.schema.registry import SchemaRegistry
from fieldstore.schema.types import EntityKeys, EntityTypeDef, FieldTypeDef, column, field


def make_registry(*fields):
    """Helper to create a registry with a fieldable node type and fields."""
    registry = SchemaRegistry()
    registry.register_entity_type(EntityTypeDef(
        name="node", base_table="node", keys=EntityKeys(id="nid", bundle="type"), fieldable=True,
    ))
    for f in fields:
        registry.add_field(f)
    return registry


class TestFieldCompatibility:
    """Tests for check_field_compatibility."""

    def test_no_changes(self):
        body = field("body", "text_long", entity_type="node")
        assert check_field_compatibility(body, body) == []

    def test_field_type_change_is_breaking(self):
        original = field("count", "integer", entity_type="node")
        changes = check_field_compatibility(original, original.with_changes(field_type="float"))

        kinds = {c.kind for c in changes}
        assert ChangeKind.FIELD_TYPE_CHANGED in kinds
        assert ChangeKind.COLUMNS_CHANGED in kinds
        assert all(c.is_breaking for c in changes)

    def test_length_setting_change_is_breaking(self):
        """Changing max_length changes the column definition."""
        original = field("title", "string", entity_type="node")
        changes = check_field_compatibility(original, original.with_changes(settings={"max_length": 64}))

        kinds = [c.kind for c in changes]
        assert ChangeKind.COLUMNS_CHANGED in kinds
        assert ChangeKind.SETTINGS_CHANGED in kinds

    def test_cardinality_change_is_not_breaking(self):
        original = field("tags", "string", entity_type="node")
        changes = check_field_compatibility(original, original.with_changes(cardinality=-1))

        assert len(changes) == 1
        assert changes[0].kind == ChangeKind.CARDINALITY_CHANGED
        assert not changes[0].is_breaking

    def test_translatable_change(self):
        original = field("tags", "string", entity_type="node")
        changes = check_field_compatibility(original, original.with_changes(translatable=True))
        assert [c.kind for c in changes] == [ChangeKind.TRANSLATABLE_CHANGED]

    def test_index_changes(self):
        """Index additions and removals between field type versions."""
        register_field_type(FieldTypeDef(
            type_id="test_indexed",
            columns={"value": column("int"), "weight": column("int")},
            indexes={"value": ("value",)},
        ), replace=True)
        register_field_type(FieldTypeDef(
            type_id="test_indexed_v2",
            columns={"value": column("int"), "weight": column("int")},
            indexes={"weight": ("weight",)},
        ), replace=True)
        original = field("score", "test_indexed", entity_type="node")
        changes = check_field_compatibility(original, original.with_changes(field_type="test_indexed_v2"))

        kinds = {c.kind for c in changes}
        assert ChangeKind.INDEX_ADDED in kinds
        assert ChangeKind.INDEX_REMOVED in kinds
        assert ChangeKind.COLUMNS_CHANGED not in kinds

    def test_field_index_override(self):
        """Indexes declared on the field are compared like type indexes."""
        original = field("body", "text_long", entity_type="node")
        changes = check_field_compatibility(original, original.with_changes(indexes={"value": (("value", 32),)}))

        assert [c.kind for c in changes] == [ChangeKind.INDEX_ADDED]
        assert not changes[0].is_breaking

    def test_change_str(self):
        original = field("tags", "string", entity_type="node")
        [change] = check_field_compatibility(original, original.with_changes(cardinality=3))
        assert str(change).startswith("[OK] CARDINALITY_CHANGED: node.tags")


class TestValidateFieldUpdate:
    """Tests for validate_field_update."""

    def test_breaking_change_without_data_allowed(self):
        original = field("title", "string", entity_type="node")
        changes = validate_field_update(original, original.with_changes(settings={"max_length": 64}), has_data=False)
        assert any(c.is_breaking for c in changes)

    def test_breaking_change_with_data_raises(self):
        original = field("title", "string", entity_type="node")
        with pytest.raises(SchemaChangeForbiddenError) as exc_info:
            validate_field_update(original, original.with_changes(settings={"max_length": 64}), has_data=True)

        assert exc_info.value.field_name == "title"
        assert all(c.is_breaking for c in exc_info.value.changes)
        assert exc_info.value.code == "SCHEMA_CHANGE_FORBIDDEN"

    def test_non_breaking_change_with_data_allowed(self):
        original = field("tags", "string", entity_type="node")
        changes = validate_field_update(original, original.with_changes(cardinality=5), has_data=True)
        assert [c.kind for c in changes] == [ChangeKind.CARDINALITY_CHANGED]


class TestRegistryCompatibility:
    """Tests for check_compatibility."""

    def test_same_fields(self):
        body = field("body", "text_long", entity_type="node")
        assert check_compatibility(make_registry(body), make_registry(body)) == []

    def test_field_added_and_removed(self):
        body = field("body", "text_long", entity_type="node")
        tags = field("tags", "string", entity_type="node")

        changes = check_compatibility(make_registry(body), make_registry(tags))

        kinds = sorted(c.kind.name for c in changes)
        assert kinds == ["FIELD_ADDED", "FIELD_REMOVED"]

    def test_fields_matched_by_uuid(self):
        """A recreated field under the same name is a removal plus an addition."""
        old = field("body", "text_long", entity_type="node")
        new = field("body", "text_long", entity_type="node")
        changes = check_compatibility(make_registry(old), make_registry(new))
        assert len(changes) == 2

    def test_fingerprint_changes_with_fields(self):
        body = field("body", "text_long", entity_type="node")
        tags = field("tags", "string", entity_type="node")
        assert generate_fingerprint(make_registry(body)) != generate_fingerprint(make_registry(body, tags))
