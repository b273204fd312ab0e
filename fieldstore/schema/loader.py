"""
YAML/JSON schema files for fieldstore.

Entity types, configurable fields and field instances can be declared in a
schema document instead of Python code:

    version: 1
    entity_types:
      - name: article
        base_table: article
        revision_table: article_revision
        keys: {id: id, uuid: uuid, revision: vid}
        fieldable: true
        base_fields:
          - {name: title, type: string}
    fields:
      - {name: body, type: text_long, entity_type: article}
      - {name: tags, type: entity_reference, entity_type: article, cardinality: unlimited}
    instances:
      - {field: body, entity_type: article, bundle: article}
      - {field: tags, entity_type: article, bundle: article}

Validation collects every problem before failing, so one run reports all
errors in a document.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import SchemaFileError
from .field_types import field_types, get_field_type, has_field_type
from .registry import SchemaRegistry
from .types import (
    CARDINALITY_UNLIMITED,
    EntityKeys,
    EntityTypeDef,
    FieldDef,
    FieldInstanceDef,
)

UNLIMITED = "unlimited"


def _parse_cardinality(value: Any) -> int:
    if value == UNLIMITED:
        return CARDINALITY_UNLIMITED
    return int(value)


@dataclass
class FieldEntry:
    """A field declared in a schema document."""

    name: str
    type: str
    entity_type: str = ""
    cardinality: int | str = 1
    translatable: bool = False
    revisionable: bool = True
    required: bool = False
    settings: dict[str, Any] = field(default_factory=dict)
    indexes: dict[str, list[Any]] = field(default_factory=dict)
    default_value: Any = None
    uuid: str = ""
    description: str = ""

    def validate(self) -> list[str]:
        """Validate the field entry."""
        errors = []
        label = f"{self.entity_type}.{self.name}" if self.entity_type else self.name
        if not self.name:
            errors.append("Field name is required")
        elif "__" in self.name:
            errors.append(f"Field '{label}': name cannot contain '__'")
        if not has_field_type(self.type):
            valid = [t.type_id for t in field_types()]
            errors.append(f"Field '{label}': invalid type '{self.type}'. Valid: {valid}")
        else:
            columns = get_field_type(self.type).columns
            for index_name, cols in self.indexes.items():
                for col in cols:
                    col_name = col[0] if isinstance(col, list) else col
                    if col_name not in columns:
                        errors.append(
                            f"Field '{label}': index '{index_name}' references unknown column '{col_name}'"
                        )
        try:
            cardinality = _parse_cardinality(self.cardinality)
        except (TypeError, ValueError):
            errors.append(f"Field '{label}': invalid cardinality '{self.cardinality}'")
        else:
            if cardinality != CARDINALITY_UNLIMITED and cardinality <= 0:
                errors.append(f"Field '{label}': cardinality must be positive or '{UNLIMITED}'")
        return errors

    def to_definition(self) -> FieldDef:
        return FieldDef(
            name=self.name,
            field_type=self.type,
            entity_type=self.entity_type,
            cardinality=_parse_cardinality(self.cardinality),
            translatable=self.translatable,
            revisionable=self.revisionable,
            required=self.required,
            settings=dict(self.settings),
            indexes={
                name: tuple(tuple(c) if isinstance(c, list) else c for c in cols)
                for name, cols in self.indexes.items()
            },
            default_value=self.default_value,
            uuid=self.uuid,
            description=self.description,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.entity_type:
            d["entity_type"] = self.entity_type
        if self.cardinality != 1:
            d["cardinality"] = self.cardinality
        if self.translatable:
            d["translatable"] = True
        if not self.revisionable:
            d["revisionable"] = False
        if self.required:
            d["required"] = True
        if self.settings:
            d["settings"] = dict(self.settings)
        if self.indexes:
            d["indexes"] = dict(self.indexes)
        if self.default_value is not None:
            d["default_value"] = self.default_value
        if self.uuid:
            d["uuid"] = self.uuid
        if self.description:
            d["description"] = self.description
        return d


@dataclass
class EntityTypeEntry:
    """An entity type declared in a schema document."""

    name: str
    base_table: str
    label: str = ""
    revision_table: str = ""
    data_table: str = ""
    revision_data_table: str = ""
    keys: dict[str, str] = field(default_factory=dict)
    fieldable: bool = False
    translatable: bool = False
    base_fields: list[FieldEntry] = field(default_factory=list)
    static_cache: bool = True
    description: str = ""

    def validate(self) -> list[str]:
        """Validate the entity type entry."""
        errors = []
        if not self.name:
            errors.append("Entity type name is required")
        if not self.base_table:
            errors.append(f"Entity type '{self.name}': base_table is required")
        unknown_keys = set(self.keys) - {"id", "uuid", "bundle", "revision", "langcode"}
        if unknown_keys:
            errors.append(f"Entity type '{self.name}': unknown keys {sorted(unknown_keys)}")
        for f in self.base_fields:
            errors.extend(f.validate())
        if not errors:
            try:
                self.to_definition()
            except ValueError as e:
                errors.append(str(e))
        return errors

    def to_definition(self) -> EntityTypeDef:
        return EntityTypeDef(
            name=self.name,
            base_table=self.base_table,
            label=self.label,
            revision_table=self.revision_table,
            data_table=self.data_table,
            revision_data_table=self.revision_data_table,
            keys=EntityKeys.from_dict(self.keys),
            fieldable=self.fieldable,
            translatable=self.translatable,
            base_fields=tuple(f.to_definition() for f in self.base_fields),
            static_cache=self.static_cache,
            description=self.description,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "base_table": self.base_table,
            "keys": dict(self.keys),
        }
        for attr in ("label", "revision_table", "data_table", "revision_data_table", "description"):
            if getattr(self, attr):
                d[attr] = getattr(self, attr)
        if self.fieldable:
            d["fieldable"] = True
        if self.translatable:
            d["translatable"] = True
        if not self.static_cache:
            d["static_cache"] = False
        if self.base_fields:
            d["base_fields"] = [f.to_dict() for f in self.base_fields]
        return d


@dataclass
class InstanceEntry:
    """A field instance declared in a schema document."""

    field: str
    entity_type: str
    bundle: str
    label: str = ""
    required: bool = False
    default_value: Any = None
    settings: dict[str, Any] = field(default_factory=dict)

    def validate(self, known_fields: set[tuple[str, str]]) -> list[str]:
        """Validate the instance entry against the declared fields."""
        errors = []
        if not self.bundle:
            errors.append(f"Instance of '{self.entity_type}.{self.field}': bundle is required")
        if (self.entity_type, self.field) not in known_fields:
            errors.append(f"Instance references unknown field '{self.entity_type}.{self.field}'")
        return errors

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "field": self.field,
            "entity_type": self.entity_type,
            "bundle": self.bundle,
        }
        if self.label:
            d["label"] = self.label
        if self.required:
            d["required"] = True
        if self.default_value is not None:
            d["default_value"] = self.default_value
        if self.settings:
            d["settings"] = dict(self.settings)
        return d


@dataclass
class SchemaDocument:
    """Complete schema document."""

    version: int = 1
    entity_types: list[EntityTypeEntry] = field(default_factory=list)
    fields: list[FieldEntry] = field(default_factory=list)
    instances: list[InstanceEntry] = field(default_factory=list)

    def validate(self) -> list[str]:
        """Validate the entire document."""
        errors = []

        names = [et.name for et in self.entity_types]
        if len(names) != len(set(names)):
            errors.append("Duplicate entity type names found")
        for et in self.entity_types:
            errors.extend(et.validate())

        entity_types = {et.name: et for et in self.entity_types}
        known_fields: set[tuple[str, str]] = set()
        for f in self.fields:
            errors.extend(f.validate())
            if not f.entity_type:
                errors.append(f"Field '{f.name}': entity_type is required")
            elif f.entity_type not in entity_types:
                errors.append(f"Field '{f.name}': unknown entity type '{f.entity_type}'")
            elif not entity_types[f.entity_type].fieldable:
                errors.append(f"Field '{f.name}': entity type '{f.entity_type}' is not fieldable")
            if (f.entity_type, f.name) in known_fields:
                errors.append(f"Duplicate field '{f.entity_type}.{f.name}'")
            known_fields.add((f.entity_type, f.name))

        for instance in self.instances:
            errors.extend(instance.validate(known_fields))

        return errors

    def build_registry(self) -> SchemaRegistry:
        """Build an (unfrozen) registry from the document.

        Raises:
            SchemaFileError: If the document does not validate
        """
        errors = self.validate()
        if errors:
            raise SchemaFileError("Invalid schema document", errors)

        registry = SchemaRegistry()
        try:
            for et in self.entity_types:
                registry.register_entity_type(et.to_definition())
            added: dict[tuple[str, str], FieldDef] = {}
            for f in self.fields:
                added[(f.entity_type, f.name)] = registry.add_field(f.to_definition())
            for instance in self.instances:
                registry.add_instance(FieldInstanceDef(
                    field=added[(instance.entity_type, instance.field)],
                    bundle=instance.bundle,
                    label=instance.label,
                    required=instance.required,
                    default_value=instance.default_value,
                    settings=dict(instance.settings),
                ))
        except (ValueError, KeyError) as e:
            raise SchemaFileError("Invalid schema document", [str(e)]) from e
        return registry

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "version": self.version,
            "entity_types": [et.to_dict() for et in self.entity_types],
        }
        if self.fields:
            d["fields"] = [f.to_dict() for f in self.fields]
        if self.instances:
            d["instances"] = [i.to_dict() for i in self.instances]
        return d

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


def parse_field(data: dict[str, Any]) -> FieldEntry:
    """Parse a field from dict."""
    return FieldEntry(
        name=data.get("name", ""),
        type=data.get("type", ""),
        entity_type=data.get("entity_type", ""),
        cardinality=data.get("cardinality", 1),
        translatable=data.get("translatable", False),
        revisionable=data.get("revisionable", True),
        required=data.get("required", False),
        settings=dict(data.get("settings") or {}),
        indexes=dict(data.get("indexes") or {}),
        default_value=data.get("default_value"),
        uuid=data.get("uuid", ""),
        description=data.get("description", ""),
    )


def parse_entity_type(data: dict[str, Any]) -> EntityTypeEntry:
    """Parse an entity type from dict."""
    return EntityTypeEntry(
        name=data.get("name", ""),
        base_table=data.get("base_table", ""),
        label=data.get("label", ""),
        revision_table=data.get("revision_table", ""),
        data_table=data.get("data_table", ""),
        revision_data_table=data.get("revision_data_table", ""),
        keys=dict(data.get("keys") or {}),
        fieldable=data.get("fieldable", False),
        translatable=data.get("translatable", False),
        base_fields=[parse_field(f) for f in data.get("base_fields", [])],
        static_cache=data.get("static_cache", True),
        description=data.get("description", ""),
    )


def parse_instance(data: dict[str, Any]) -> InstanceEntry:
    """Parse a field instance from dict."""
    return InstanceEntry(
        field=data.get("field", ""),
        entity_type=data.get("entity_type", ""),
        bundle=data.get("bundle", ""),
        label=data.get("label", ""),
        required=data.get("required", False),
        default_value=data.get("default_value"),
        settings=dict(data.get("settings") or {}),
    )


def parse_document(data: dict[str, Any]) -> SchemaDocument:
    """Parse a complete schema document from dict."""
    if not isinstance(data, dict):
        raise SchemaFileError("Schema document must be a mapping")
    return SchemaDocument(
        version=data.get("version", 1),
        entity_types=[parse_entity_type(et) for et in data.get("entity_types", [])],
        fields=[parse_field(f) for f in data.get("fields", [])],
        instances=[parse_instance(i) for i in data.get("instances", [])],
    )


def parse_schema(text: str) -> SchemaDocument:
    """Parse a schema document from YAML (or JSON, which is valid YAML) text.

    Raises:
        SchemaFileError: If the text is not valid YAML
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SchemaFileError(f"Invalid YAML: {e}") from e
    return parse_document(data or {})


def load_schema_file(path: str | Path) -> SchemaDocument:
    """Load a schema document from a .yaml/.yml/.json file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        try:
            return parse_document(json.loads(text) or {})
        except json.JSONDecodeError as e:
            raise SchemaFileError(f"Invalid JSON in {path}: {e}") from e
    return parse_schema(text)
