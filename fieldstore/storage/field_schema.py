"""
Table specs for entity types and configurable fields.

Field tables:
    Every configurable field gets a current table and a revision table
    (see naming). Both have the fixed columns bundle, deleted, entity_id,
    revision_id, langcode and delta, followed by one column per field
    property. The current table is keyed by (entity_id, deleted, delta,
    langcode), the revision table by (entity_id, revision_id, deleted,
    delta, langcode).

Entity tables:
    base_table           one row per entity, mirrors the default revision
    revision_table       one row per revision
    data_table           one row per entity and language
    revision_data_table  one row per revision and language

    A base field with a single column is stored in a column named after
    the field. A base field with several columns uses <field>__<property>
    columns.
"""

from __future__ import annotations

from dataclasses import replace

from ..schema.types import ColumnSpec, EntityTypeDef, FieldDef, ForeignKeySpec, column
from .database import TableSpec
from .naming import (
    field_column_name,
    field_index_name,
    field_revision_table_name,
    field_table_name,
)

TABLE_KEYS = ("base_table", "revision_table", "data_table", "revision_data_table")

# Separator between field and property in multi-column base field columns.
PROPERTY_SEPARATOR = "__"


def _fixed_field_columns() -> dict[str, ColumnSpec]:
    return {
        "bundle": column(
            "varchar", length=128, not_null=True, default="",
            description="The field instance bundle to which this row belongs",
        ),
        "deleted": column(
            "int", size="tiny", not_null=True, default=0,
            description="Whether this data item has been deleted",
        ),
        "entity_id": column(
            "int", unsigned=True, not_null=True,
            description="The entity id this data is attached to",
        ),
        "revision_id": column(
            "int", unsigned=True,
            description="The entity revision id this data is attached to",
        ),
        "langcode": column(
            "varchar", length=32, not_null=True, default="",
            description="The language code for this data item",
        ),
        "delta": column(
            "int", unsigned=True, not_null=True,
            description="The sequence number for this data item",
        ),
    }


def field_columns(field_def: FieldDef) -> dict[str, str]:
    """Property name -> table column for a configurable field."""
    return {prop: field_column_name(field_def.name, prop) for prop in field_def.columns}


def field_indexes(field_def: FieldDef) -> dict[str, tuple]:
    """Table index name -> table columns for a configurable field."""
    indexes: dict[str, tuple] = {}
    for name, columns in field_def.schema.indexes.items():
        real_columns = []
        for entry in columns:
            # An index column is either a name or a (name, length) pair.
            if isinstance(entry, tuple):
                real_columns.append((field_column_name(field_def.name, entry[0]), entry[1]))
            else:
                real_columns.append(field_column_name(field_def.name, entry))
        indexes[field_index_name(field_def.name, name)] = tuple(real_columns)
    return indexes


def field_table_specs(field_def: FieldDef) -> dict[str, TableSpec]:
    """Current and revision table specs of a configurable field.

    Returns:
        Table name -> TableSpec, current table first
    """
    schema = field_def.schema
    columns = _fixed_field_columns()
    for prop, spec in schema.columns.items():
        columns[field_column_name(field_def.name, prop)] = spec

    indexes: dict[str, tuple] = {
        "bundle": ("bundle",),
        "deleted": ("deleted",),
        "entity_id": ("entity_id",),
        "revision_id": ("revision_id",),
        "langcode": ("langcode",),
    }
    indexes.update(field_indexes(field_def))

    foreign_keys = {
        field_index_name(field_def.name, name): ForeignKeySpec(
            table=fk.table,
            columns={field_column_name(field_def.name, c): ref for c, ref in fk.columns.items()},
        )
        for name, fk in schema.foreign_keys.items()
    }

    current = TableSpec(
        columns=columns,
        primary_key=("entity_id", "deleted", "delta", "langcode"),
        indexes=indexes,
        foreign_keys=foreign_keys,
        description=f"Data storage for {field_def.entity_type} field {field_def.name}.",
    )

    revision_columns = dict(columns)
    revision_columns["revision_id"] = replace(
        columns["revision_id"], not_null=True,
        description="The entity revision id this data is attached to",
    )
    revision = TableSpec(
        columns=revision_columns,
        primary_key=("entity_id", "revision_id", "deleted", "delta", "langcode"),
        indexes=dict(indexes),
        foreign_keys=dict(foreign_keys),
        description=f"Revision archive storage for {field_def.entity_type} field {field_def.name}.",
    )

    return {
        field_table_name(field_def): current,
        field_revision_table_name(field_def): revision,
    }


def base_field_columns(field_def: FieldDef) -> dict[str, ColumnSpec]:
    """Entity-table columns of a base field.

    Base field columns are nullable so that storage defaults apply to
    new entities.
    """
    columns = field_def.columns
    if len(columns) == 1:
        spec = next(iter(columns.values()))
        return {field_def.name: replace(spec, not_null=False, default=None)}
    return {
        f"{field_def.name}{PROPERTY_SEPARATOR}{prop}": replace(spec, not_null=False, default=None)
        for prop, spec in columns.items()
    }


def entity_table_specs(entity_type: EntityTypeDef) -> dict[str, tuple[str, TableSpec]]:
    """Table specs of an entity type.

    Returns:
        Table key -> (table name, TableSpec) for every table the type uses
    """
    keys = entity_type.keys
    definitions = entity_type.field_definitions()
    key_names = entity_type.key_names() | {"default_langcode"}
    base_fields = [f for name, f in definitions.items() if name not in key_names]
    if entity_type.data_table:
        shared_fields = [f for f in base_fields if not f.translatable]
        data_fields = [f for f in base_fields if f.translatable]
    else:
        shared_fields = base_fields
        data_fields = []

    id_ref = column("int", unsigned=True, not_null=True, description="Entity ID")
    langcode = column("varchar", length=12, not_null=True, default="", description="Language code")

    # Base table.
    base_columns: dict[str, ColumnSpec] = {
        keys.id: column("serial", unsigned=True, not_null=True, description="Entity ID"),
    }
    unique_keys: dict[str, tuple[str, ...]] = {}
    if keys.uuid:
        base_columns[keys.uuid] = column("varchar", length=128, description="Unique key")
        unique_keys[keys.uuid] = (keys.uuid,)
    if keys.bundle:
        base_columns[keys.bundle] = column(
            "varchar", length=32, not_null=True, default="", description="Bundle",
        )
    if keys.revision:
        base_columns[keys.revision] = column("int", unsigned=True, description="Default revision ID")
    if keys.langcode:
        base_columns[keys.langcode] = langcode
    for f in shared_fields:
        base_columns.update(base_field_columns(f))

    base_indexes: dict[str, tuple] = {}
    if keys.bundle:
        base_indexes[keys.bundle] = (keys.bundle,)
    if keys.revision:
        unique_keys[keys.revision] = (keys.revision,)

    tables: dict[str, tuple[str, TableSpec]] = {
        "base_table": (entity_type.base_table, TableSpec(
            columns=base_columns,
            primary_key=(keys.id,),
            indexes=base_indexes,
            unique_keys=unique_keys,
            description=f"The base table for {entity_type.name} entities.",
        )),
    }

    # Revision table.
    if entity_type.revision_table:
        revision_columns: dict[str, ColumnSpec] = {
            keys.id: id_ref,
            keys.revision: column("serial", unsigned=True, not_null=True, description="Revision ID"),
        }
        if keys.langcode:
            revision_columns[keys.langcode] = langcode
        for f in shared_fields:
            if f.revisionable:
                revision_columns.update(base_field_columns(f))
        tables["revision_table"] = (entity_type.revision_table, TableSpec(
            columns=revision_columns,
            primary_key=(keys.revision,),
            indexes={keys.id: (keys.id,)},
            description=f"The revision table for {entity_type.name} entities.",
        ))

    # Data tables.
    if entity_type.data_table:
        data_columns: dict[str, ColumnSpec] = {keys.id: id_ref}
        if keys.revision:
            data_columns[keys.revision] = column(
                "int", unsigned=True, not_null=True, description="Revision ID",
            )
        data_columns[keys.langcode] = langcode
        data_columns["default_langcode"] = column(
            "int", size="tiny", not_null=True, default=1,
            description="Whether this row holds the original language",
        )
        for f in data_fields:
            data_columns.update(base_field_columns(f))

        data_indexes: dict[str, tuple] = {}
        if keys.revision:
            data_indexes[keys.revision] = (keys.revision,)
        tables["data_table"] = (entity_type.data_table, TableSpec(
            columns=data_columns,
            primary_key=(keys.id, keys.langcode),
            indexes=data_indexes,
            description=f"The data table for {entity_type.name} entities.",
        ))

        if entity_type.revision_data_table:
            tables["revision_data_table"] = (entity_type.revision_data_table, TableSpec(
                columns=dict(data_columns),
                primary_key=(keys.revision, keys.langcode),
                indexes={keys.id: (keys.id,)},
                description=f"The revision data table for {entity_type.name} entities.",
            ))

    return tables
