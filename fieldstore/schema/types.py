"""
Core type definitions for the fieldstore schema system.

This module defines the declarative model the storage engine works from:
- ColumnSpec / ForeignKeySpec / FieldSchema: relational column schema of a field
- FieldTypeDef: a field type (column schema + default settings)
- FieldDef: a named, typed, multi-value field
- FieldInstanceDef: attachment of a field to one entity-type/bundle
- EntityKeys / EntityTypeDef: a kind of persisted object and its tables

Invariants:
    - Entity types are immutable once registered
    - A field's column schema cannot change once it has data
    - Field names never contain the "__" column separator
    - Field types never declare a column named like a fixed field-table column
    - Cardinality is a positive integer or CARDINALITY_UNLIMITED

How to change safely:
    - Add new field types instead of changing the columns of existing ones
    - Add indexes freely; they can be created on tables with data
    - Never rename a field's uuid; deleted-table names are derived from it

Example:
    >>> from fieldstore.schema.types import EntityTypeDef, EntityKeys, field
    >>> Article = EntityTypeDef(
    ...     name="article",
    ...     base_table="article",
    ...     revision_table="article_revision",
    ...     keys=EntityKeys(id="id", uuid="uuid", revision="vid"),
    ...     fieldable=True,
    ...     base_fields=(field("title", "string"),),
    ... )
"""

from __future__ import annotations

import uuid as uuid_lib
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Union

# Marker for fields accepting any number of values.
CARDINALITY_UNLIMITED = -1

# In-memory slot holding values in the entity's original language.
LANGCODE_DEFAULT = "x-default"

# Stored langcode of data that is not language specific.
LANGCODE_NOT_SPECIFIED = "und"

# Fixed columns of every dedicated field table.
RESERVED_COLUMNS = ("entity_id", "revision_id", "bundle", "delta", "langcode", "deleted")

COLUMN_SIZES = ("tiny", "small", "medium", "normal", "big")

IndexColumn = Union[str, tuple[str, int]]


class ColumnType(Enum):
    """Portable column types understood by the schema layer."""

    SERIAL = "serial"
    INT = "int"
    FLOAT = "float"
    NUMERIC = "numeric"
    VARCHAR = "varchar"
    CHAR = "char"
    TEXT = "text"
    BLOB = "blob"

    @classmethod
    def from_str(cls, value: str) -> ColumnType:
        """Convert string representation to ColumnType.

        Raises:
            ValueError: If value is not a valid column type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid column type '{value}'. Valid types: {valid}")


@dataclass(frozen=True)
class ColumnSpec:
    """Definition of a single relational column.

    Attributes:
        type: Portable column type
        length: Maximum length for varchar/char columns
        length_setting: Field setting that supplies ``length`` at resolve time
        size: Storage size hint (tiny, small, medium, normal, big)
        unsigned: Whether negative numbers are disallowed
        not_null: Whether NULL is disallowed
        default: Column default value
        serialize: Whether values are stored as an encoded blob
        description: Human-readable description
    """

    type: ColumnType
    length: int | None = None
    length_setting: str | None = None
    size: str = "normal"
    unsigned: bool = False
    not_null: bool = False
    default: Any = None
    serialize: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if self.size not in COLUMN_SIZES:
            raise ValueError(f"Invalid column size '{self.size}'. Valid sizes: {list(COLUMN_SIZES)}")
        if self.length is not None and self.length <= 0:
            raise ValueError(f"Column length must be positive, got {self.length}")

    def resolve(self, settings: dict[str, Any]) -> ColumnSpec:
        """Return a copy with ``length_setting`` replaced by a concrete length."""
        if not self.length_setting:
            return self
        length = settings.get(self.length_setting, self.length)
        return replace(self, length=int(length) if length is not None else None, length_setting=None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"type": self.type.value}
        if self.length is not None:
            result["length"] = self.length
        if self.length_setting:
            result["length_setting"] = self.length_setting
        if self.size != "normal":
            result["size"] = self.size
        if self.unsigned:
            result["unsigned"] = True
        if self.not_null:
            result["not_null"] = True
        if self.default is not None:
            result["default"] = self.default
        if self.serialize:
            result["serialize"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnSpec:
        """Create from dictionary representation."""
        return cls(
            type=ColumnType.from_str(data["type"]),
            length=data.get("length"),
            length_setting=data.get("length_setting"),
            size=data.get("size", "normal"),
            unsigned=data.get("unsigned", False),
            not_null=data.get("not_null", False),
            default=data.get("default"),
            serialize=data.get("serialize", False),
            description=data.get("description", ""),
        )


def column(type: str | ColumnType, **kwargs: Any) -> ColumnSpec:
    """Convenience function to create a ColumnSpec.

    Example:
        >>> column("varchar", length=255, not_null=True)
    """
    if isinstance(type, str):
        type = ColumnType.from_str(type)
    return ColumnSpec(type=type, **kwargs)


@dataclass(frozen=True)
class ForeignKeySpec:
    """Foreign key from field columns to another table.

    Attributes:
        table: Referenced table
        columns: Local column -> referenced column
    """

    table: str
    columns: dict[str, str] = dataclass_field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"table": self.table, "columns": dict(self.columns)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ForeignKeySpec:
        return cls(table=data["table"], columns=dict(data.get("columns", {})))


@dataclass(frozen=True)
class FieldSchema:
    """Resolved column schema of one field.

    Attributes:
        columns: Property name -> column definition
        indexes: Index name -> indexed property names
        foreign_keys: Name -> foreign key
    """

    columns: dict[str, ColumnSpec] = dataclass_field(default_factory=dict)
    indexes: dict[str, tuple[IndexColumn, ...]] = dataclass_field(default_factory=dict)
    foreign_keys: dict[str, ForeignKeySpec] = dataclass_field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": {name: spec.to_dict() for name, spec in self.columns.items()},
            "indexes": {name: [list(c) if isinstance(c, tuple) else c for c in cols]
                        for name, cols in self.indexes.items()},
            "foreign_keys": {name: fk.to_dict() for name, fk in self.foreign_keys.items()},
        }


def _index_column_name(entry: IndexColumn) -> str:
    return entry[0] if isinstance(entry, tuple) else entry


def _parse_indexes(data: dict[str, Any] | None) -> dict[str, tuple[IndexColumn, ...]]:
    """Index definitions from their serialized (list) form."""
    return {
        name: tuple(tuple(c) if isinstance(c, list) else c for c in cols)
        for name, cols in (data or {}).items()
    }


@dataclass(frozen=True)
class FieldTypeDef:
    """Definition of a field type.

    A field type describes the columns a field of that type stores, the
    indexes and foreign keys over those columns, and the default settings
    a field of that type starts with.

    Attributes:
        type_id: Stable identifier (e.g. "text_long")
        label: Human-readable name
        columns: Property name -> column definition
        indexes: Index name -> property names
        foreign_keys: Name -> foreign key
        default_settings: Settings applied when a field does not override them
        main_property: Property a scalar value is assigned to
        description: Human-readable description

    Invariants:
        - At least one column is declared
        - main_property names a declared column
        - No declared column collides with RESERVED_COLUMNS
        - Indexes only reference declared columns
    """

    type_id: str
    label: str = ""
    columns: dict[str, ColumnSpec] = dataclass_field(default_factory=dict)
    indexes: dict[str, tuple[IndexColumn, ...]] = dataclass_field(default_factory=dict)
    foreign_keys: dict[str, ForeignKeySpec] = dataclass_field(default_factory=dict)
    default_settings: dict[str, Any] = dataclass_field(default_factory=dict)
    main_property: str = "value"
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field type definition."""
        if not self.type_id:
            raise ValueError("Field type id cannot be empty")
        if not self.columns:
            raise ValueError(f"Field type '{self.type_id}' declares no columns")
        if self.main_property not in self.columns:
            raise ValueError(
                f"main_property '{self.main_property}' is not a column of field type '{self.type_id}'"
            )
        for name in self.columns:
            if name in RESERVED_COLUMNS:
                raise ValueError(
                    f"Column '{name}' of field type '{self.type_id}' collides with a fixed field-table column"
                )
        for index_name, index_columns in self.indexes.items():
            for entry in index_columns:
                if _index_column_name(entry) not in self.columns:
                    raise ValueError(
                        f"Index '{index_name}' of field type '{self.type_id}' references "
                        f"unknown column '{_index_column_name(entry)}'"
                    )

    def schema_for(self, settings: dict[str, Any] | None = None) -> FieldSchema:
        """Resolve the column schema for a field with the given settings."""
        merged = {**self.default_settings, **(settings or {})}
        return FieldSchema(
            columns={name: spec.resolve(merged) for name, spec in self.columns.items()},
            indexes=dict(self.indexes),
            foreign_keys=dict(self.foreign_keys),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "type_id": self.type_id,
            "columns": {name: spec.to_dict() for name, spec in self.columns.items()},
            "main_property": self.main_property,
        }
        if self.label:
            result["label"] = self.label
        if self.indexes:
            result["indexes"] = {name: [list(c) if isinstance(c, tuple) else c for c in cols]
                                 for name, cols in self.indexes.items()}
        if self.foreign_keys:
            result["foreign_keys"] = {name: fk.to_dict() for name, fk in self.foreign_keys.items()}
        if self.default_settings:
            result["default_settings"] = dict(self.default_settings)
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldTypeDef:
        """Create from dictionary representation."""
        return cls(
            type_id=data["type_id"],
            label=data.get("label", ""),
            columns={name: ColumnSpec.from_dict(spec) for name, spec in data["columns"].items()},
            indexes={
                name: tuple(tuple(c) if isinstance(c, list) else c for c in cols)
                for name, cols in data.get("indexes", {}).items()
            },
            foreign_keys={
                name: ForeignKeySpec.from_dict(fk) for name, fk in data.get("foreign_keys", {}).items()
            },
            default_settings=dict(data.get("default_settings", {})),
            main_property=data.get("main_property", "value"),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class FieldDef:
    """Definition of a named, typed, multi-value field.

    A FieldDef listed in ``EntityTypeDef.base_fields`` is a base property
    stored in the entity tables. A FieldDef with an ``entity_type`` that is
    attached to bundles through FieldInstanceDef is a configurable field
    stored in its own pair of tables.

    Attributes:
        name: Machine name (unique per entity type)
        field_type: Field type identifier (see field_types)
        entity_type: Owning entity type for configurable fields
        cardinality: Maximum number of items, or CARDINALITY_UNLIMITED
        translatable: Whether values differ per language
        revisionable: Whether base-property values are tracked per revision
        required: Whether a value is required
        settings: Field settings (override field type defaults)
        indexes: Extra indexes, merged over the field type indexes
        default_value: Value applied on create when none is given
        deleted: Soft-delete marker
        uuid: Stable identifier used for deleted-table names
        description: Human-readable description

    Invariants:
        - name is non-empty and never contains "__"
        - cardinality is positive or CARDINALITY_UNLIMITED
        - uuid never changes once assigned
    """

    name: str
    field_type: str
    entity_type: str = ""
    cardinality: int = 1
    translatable: bool = False
    revisionable: bool = True
    required: bool = False
    settings: dict[str, Any] = dataclass_field(default_factory=dict)
    indexes: dict[str, tuple[IndexColumn, ...]] = dataclass_field(default_factory=dict)
    default_value: Any = None
    deleted: bool = False
    uuid: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if "__" in self.name:
            raise ValueError(f"Field name '{self.name}' cannot contain '__'")
        if self.cardinality != CARDINALITY_UNLIMITED and self.cardinality <= 0:
            raise ValueError(
                f"cardinality must be positive or CARDINALITY_UNLIMITED, got {self.cardinality}"
            )

    @property
    def type_def(self) -> FieldTypeDef:
        """The field type this field is declared with."""
        from .field_types import get_field_type

        return get_field_type(self.field_type)

    @property
    def schema(self) -> FieldSchema:
        """Resolved column schema (field type columns with field settings).

        Raises:
            ValueError: If an index of the field references an unknown column
        """
        schema = self.type_def.schema_for(self.settings)
        if not self.indexes:
            return schema
        for index_name, index_columns in self.indexes.items():
            for entry in index_columns:
                if _index_column_name(entry) not in schema.columns:
                    raise ValueError(
                        f"Index '{index_name}' of field '{self.name}' references "
                        f"unknown column '{_index_column_name(entry)}'"
                    )
        return replace(schema, indexes={**schema.indexes, **self.indexes})

    @property
    def columns(self) -> dict[str, ColumnSpec]:
        return self.schema.columns

    @property
    def property_names(self) -> tuple[str, ...]:
        return tuple(self.type_def.columns)

    @property
    def main_property(self) -> str:
        return self.type_def.main_property

    @property
    def is_multiple(self) -> bool:
        return self.cardinality == CARDINALITY_UNLIMITED or self.cardinality > 1

    def get_setting(self, name: str, default: Any = None) -> Any:
        """Get a setting, falling back to the field type default."""
        if name in self.settings:
            return self.settings[name]
        return self.type_def.default_settings.get(name, default)

    def with_changes(self, **changes: Any) -> FieldDef:
        """Return a copy with the given attributes replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.field_type,
        }
        if self.entity_type:
            result["entity_type"] = self.entity_type
        if self.cardinality != 1:
            result["cardinality"] = self.cardinality
        if self.translatable:
            result["translatable"] = True
        if not self.revisionable:
            result["revisionable"] = False
        if self.required:
            result["required"] = True
        if self.settings:
            result["settings"] = dict(self.settings)
        if self.indexes:
            result["indexes"] = {name: [list(c) if isinstance(c, tuple) else c for c in cols]
                                 for name, cols in self.indexes.items()}
        if self.default_value is not None:
            result["default_value"] = self.default_value
        if self.deleted:
            result["deleted"] = True
        if self.uuid:
            result["uuid"] = self.uuid
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            field_type=data["type"],
            entity_type=data.get("entity_type", ""),
            cardinality=data.get("cardinality", 1),
            translatable=data.get("translatable", False),
            revisionable=data.get("revisionable", True),
            required=data.get("required", False),
            settings=dict(data.get("settings") or {}),
            indexes=_parse_indexes(data.get("indexes")),
            default_value=data.get("default_value"),
            deleted=data.get("deleted", False),
            uuid=data.get("uuid", ""),
            description=data.get("description", ""),
        )


def field(
    name: str,
    field_type: str,
    *,
    entity_type: str = "",
    cardinality: int = 1,
    translatable: bool = False,
    revisionable: bool = True,
    required: bool = False,
    settings: dict[str, Any] | None = None,
    indexes: dict[str, tuple[IndexColumn, ...]] | None = None,
    default_value: Any = None,
    uuid: str | None = None,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Configurable fields (those given an ``entity_type``) get a fresh uuid
    when none is passed. The field type must be registered.

    Example:
        >>> title = field("title", "string", translatable=True)
        >>> tags = field("tags", "entity_reference", entity_type="article",
        ...              cardinality=CARDINALITY_UNLIMITED)
    """
    from .field_types import get_field_type

    get_field_type(field_type)
    if uuid is None:
        uuid = str(uuid_lib.uuid4()) if entity_type else ""
    return FieldDef(
        name=name,
        field_type=field_type,
        entity_type=entity_type,
        cardinality=cardinality,
        translatable=translatable,
        revisionable=revisionable,
        required=required,
        settings=dict(settings or {}),
        indexes=dict(indexes or {}),
        default_value=default_value,
        uuid=uuid,
        description=description,
    )


@dataclass(frozen=True)
class FieldInstanceDef:
    """Attachment of a field to one entity-type/bundle pair.

    Attributes:
        field: The shared field definition
        bundle: Bundle the field is attached to
        label: Human-readable label
        required: Whether a value is required on this bundle
        default_value: Bundle-specific default (overrides the field default)
        settings: Bundle-specific settings
        deleted: Soft-delete marker
        uuid: Stable identifier
    """

    field: FieldDef
    bundle: str
    label: str = ""
    required: bool = False
    default_value: Any = None
    settings: dict[str, Any] = dataclass_field(default_factory=dict)
    deleted: bool = False
    uuid: str = ""

    def __post_init__(self) -> None:
        if not self.bundle:
            raise ValueError(f"Instance of field '{self.field.name}' requires a bundle")
        if not self.field.entity_type:
            raise ValueError(f"Field '{self.field.name}' has no entity_type and cannot be attached")

    @property
    def entity_type(self) -> str:
        return self.field.entity_type

    @property
    def field_name(self) -> str:
        return self.field.name

    def effective_default(self) -> Any:
        """Default value for new entities: instance first, then field."""
        if self.default_value is not None:
            return self.default_value
        return self.field.default_value

    def with_changes(self, **changes: Any) -> FieldInstanceDef:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "field": self.field.name,
            "entity_type": self.entity_type,
            "bundle": self.bundle,
        }
        if self.field.uuid:
            result["field_uuid"] = self.field.uuid
        if self.label:
            result["label"] = self.label
        if self.required:
            result["required"] = True
        if self.default_value is not None:
            result["default_value"] = self.default_value
        if self.settings:
            result["settings"] = dict(self.settings)
        if self.deleted:
            result["deleted"] = True
        if self.uuid:
            result["uuid"] = self.uuid
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], field_def: FieldDef) -> FieldInstanceDef:
        return cls(
            field=field_def,
            bundle=data["bundle"],
            label=data.get("label", ""),
            required=data.get("required", False),
            default_value=data.get("default_value"),
            settings=dict(data.get("settings") or {}),
            deleted=data.get("deleted", False),
            uuid=data.get("uuid", ""),
        )


@dataclass(frozen=True)
class EntityKeys:
    """Names of the key properties of an entity type.

    An empty string means the entity type does not use that key.
    """

    id: str = "id"
    uuid: str = ""
    bundle: str = ""
    revision: str = ""
    langcode: str = ""

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in (
            ("id", self.id),
            ("uuid", self.uuid),
            ("bundle", self.bundle),
            ("revision", self.revision),
            ("langcode", self.langcode),
        ) if v}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityKeys:
        return cls(
            id=data.get("id", "id"),
            uuid=data.get("uuid", ""),
            bundle=data.get("bundle", ""),
            revision=data.get("revision", ""),
            langcode=data.get("langcode", ""),
        )


@dataclass(frozen=True)
class EntityTypeDef:
    """Definition of a kind of persisted object.

    Attributes:
        name: Machine name (e.g. "node")
        base_table: Table holding one row per entity (default revision)
        label: Human-readable name
        revision_table: Table holding one row per revision
        data_table: Table holding one row per entity and language
        revision_data_table: Table holding one row per revision and language
        keys: Names of the key properties
        fieldable: Whether configurable fields can be attached
        translatable: Whether property data is stored per language
        base_fields: Base property definitions stored in the entity tables
        static_cache: Whether loaded entities are kept in the entity cache
        description: Human-readable description

    Invariants:
        - A revision key requires a revision table and vice versa
        - A revision data table requires both a data table and a revision table
        - A translatable type requires a data table and a langcode key
        - Base field names are unique and do not shadow key names
    """

    name: str
    base_table: str
    label: str = ""
    revision_table: str = ""
    data_table: str = ""
    revision_data_table: str = ""
    keys: EntityKeys = dataclass_field(default_factory=EntityKeys)
    fieldable: bool = False
    translatable: bool = False
    base_fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    static_cache: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity type definition."""
        if not self.name:
            raise ValueError("Entity type name cannot be empty")
        if not self.base_table:
            raise ValueError(f"Entity type '{self.name}' requires a base_table")
        if not self.keys.id:
            raise ValueError(f"Entity type '{self.name}' requires an id key")
        if bool(self.keys.revision) != bool(self.revision_table):
            raise ValueError(
                f"Entity type '{self.name}': revision key and revision_table must be set together"
            )
        if self.revision_data_table and not (self.data_table and self.revision_table):
            raise ValueError(
                f"Entity type '{self.name}': revision_data_table requires data_table and revision_table"
            )
        if self.data_table and self.revision_table and not self.revision_data_table:
            raise ValueError(
                f"Entity type '{self.name}': revisionable types with a data_table need a revision_data_table"
            )
        if self.translatable and not (self.data_table and self.keys.langcode):
            raise ValueError(
                f"Entity type '{self.name}': translatable types need a data_table and a langcode key"
            )

        names = [f.name for f in self.base_fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate base field name in entity type '{self.name}'")
        reserved = self.key_names() | {"default_langcode"}
        shadowed = sorted(set(names) & reserved)
        if shadowed:
            raise ValueError(f"Base fields {shadowed} of entity type '{self.name}' shadow key names")

    @property
    def revisionable(self) -> bool:
        return bool(self.keys.revision)

    @property
    def has_bundles(self) -> bool:
        return bool(self.keys.bundle)

    def key_names(self) -> set[str]:
        """Names of all key properties in use."""
        return {k for k in self.keys.to_dict().values() if k}

    def field_definitions(self) -> dict[str, FieldDef]:
        """Base field definitions, key properties first.

        Returns:
            Field name -> FieldDef for every property stored in the entity tables
        """
        keys = self.keys
        definitions: dict[str, FieldDef] = {}
        definitions[keys.id] = FieldDef(
            name=keys.id, field_type="integer", settings={"unsigned": True},
            description="Entity ID",
        )
        if keys.uuid:
            definitions[keys.uuid] = FieldDef(name=keys.uuid, field_type="uuid", description="UUID")
        if keys.bundle:
            definitions[keys.bundle] = FieldDef(
                name=keys.bundle, field_type="string", settings={"max_length": 32},
                description="Bundle",
            )
        if keys.revision:
            definitions[keys.revision] = FieldDef(
                name=keys.revision, field_type="integer", settings={"unsigned": True},
                description="Revision ID",
            )
        if keys.langcode:
            definitions[keys.langcode] = FieldDef(
                name=keys.langcode, field_type="language",
                translatable=bool(self.data_table), description="Language code",
            )
        if self.data_table:
            definitions["default_langcode"] = FieldDef(
                name="default_langcode", field_type="boolean", translatable=True,
                default_value=1, description="Whether this is the original language",
            )
        for f in self.base_fields:
            definitions[f.name] = f
        return definitions

    def get_base_field(self, name: str) -> FieldDef | None:
        """Get a base field (or key field) by name."""
        return self.field_definitions().get(name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "base_table": self.base_table,
            "keys": self.keys.to_dict(),
        }
        for attr in ("label", "revision_table", "data_table", "revision_data_table", "description"):
            value = getattr(self, attr)
            if value:
                result[attr] = value
        if self.fieldable:
            result["fieldable"] = True
        if self.translatable:
            result["translatable"] = True
        if not self.static_cache:
            result["static_cache"] = False
        if self.base_fields:
            result["base_fields"] = [f.to_dict() for f in self.base_fields]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityTypeDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            base_table=data["base_table"],
            label=data.get("label", ""),
            revision_table=data.get("revision_table", ""),
            data_table=data.get("data_table", ""),
            revision_data_table=data.get("revision_data_table", ""),
            keys=EntityKeys.from_dict(data.get("keys", {})),
            fieldable=data.get("fieldable", False),
            translatable=data.get("translatable", False),
            base_fields=tuple(FieldDef.from_dict(f) for f in data.get("base_fields", [])),
            static_cache=data.get("static_cache", True),
            description=data.get("description", ""),
        )

    def __hash__(self) -> int:
        """Hash based on name (stable identifier)."""
        return hash(self.name)

    def __eq__(self, other: object) -> bool:
        """Equality based on name."""
        if not isinstance(other, EntityTypeDef):
            return NotImplemented
        return self.name == other.name
