"""
Storage module for fieldstore - relational persistence of fieldable entities.

This module handles:
- The SQLite backend (transactions, data operations, DDL)
- Deterministic field table naming and field/entity table schemas
- Field value encoding and entity-table row mapping
- The per-type storage controller (load, save, delete, revisions)
- Field table lifecycle through the field configuration manager

Invariants:
    - Every save and delete is atomic
    - Base tables mirror the default revision
    - Field table names depend only on the field definition

How to change safely:
    - Keep table naming stable; existing databases depend on it
    - Run every multi-statement write inside Database.transaction()
"""

from .cache import EntityCache
from .codec import FieldValueCodec
from .controller import EntityStorageController, SaveResult
from .database import Database, Schema, TableSpec
from .field_manager import FieldManager
from .field_schema import entity_table_specs, field_columns, field_table_specs
from .hooks import FIELD_METHODS, HOOKS, HookDispatcher
from .mapper import EntityMapper, StorageRecord
from .naming import (
    field_column_name,
    field_index_name,
    field_revision_table_name,
    field_table_name,
    generate_table_name,
)

__all__ = [
    "Database",
    "Schema",
    "TableSpec",
    "EntityCache",
    "FieldValueCodec",
    "EntityStorageController",
    "SaveResult",
    "FieldManager",
    "entity_table_specs",
    "field_columns",
    "field_table_specs",
    "HookDispatcher",
    "HOOKS",
    "FIELD_METHODS",
    "EntityMapper",
    "StorageRecord",
    "field_column_name",
    "field_index_name",
    "field_revision_table_name",
    "field_table_name",
    "generate_table_name",
]
