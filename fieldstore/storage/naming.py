"""
Table, column and index names of configurable field storage.

These names are the durable on-disk contract of field data: changing any
rule here orphans existing tables.

Rules:
    - Current table:  <entity_type>__<field_name>
    - Revision table: <entity_type>_revision__<field_name>
    - Names longer than 48 characters fall back to
      <entity_type[:34]>__<hash> / <entity_type[:34]>_r__<hash>, where hash
      is the first 10 hex characters of sha256(field uuid)
    - Deleted fields always use field_deleted_data_<hash> /
      field_deleted_revision_<hash>
    - Column: the property name itself if it is a reserved column,
      otherwise <field_name>_<property>
    - Index: <field_name>_<index>
"""

from __future__ import annotations

import hashlib

from ..schema.types import RESERVED_COLUMNS, FieldDef

# Keeps a 16 character margin for backend table prefixes.
TABLE_NAME_MAX_LENGTH = 48
ENTITY_TYPE_MAX_LENGTH = 34
HASH_LENGTH = 10


def uuid_hash(field_uuid: str) -> str:
    """Short hash of a field uuid used in fallback and deleted names."""
    return hashlib.sha256(field_uuid.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def generate_table_name(entity_type: str, field_name: str, field_uuid: str, revision: bool) -> str:
    """Name of a live field's current or revision table."""
    separator = "_revision__" if revision else "__"
    table_name = entity_type + separator + field_name
    if len(table_name) > TABLE_NAME_MAX_LENGTH:
        # Same truncation for both tables, shorter separator for revisions.
        separator = "_r__" if revision else "__"
        table_name = entity_type[:ENTITY_TYPE_MAX_LENGTH] + separator + uuid_hash(field_uuid)
    return table_name


def field_table_name(field_def: FieldDef) -> str:
    """Name of the table holding a field's current values."""
    if field_def.deleted:
        return "field_deleted_data_" + uuid_hash(field_def.uuid)
    return generate_table_name(field_def.entity_type, field_def.name, field_def.uuid, revision=False)


def field_revision_table_name(field_def: FieldDef) -> str:
    """Name of the table holding a field's values per revision."""
    if field_def.deleted:
        return "field_deleted_revision_" + uuid_hash(field_def.uuid)
    return generate_table_name(field_def.entity_type, field_def.name, field_def.uuid, revision=True)


def field_column_name(field_name: str, column: str) -> str:
    return column if column in RESERVED_COLUMNS else f"{field_name}_{column}"


def field_index_name(field_name: str, index: str) -> str:
    return f"{field_name}_{index}"
