"""
Schema module for fieldstore.

This module provides the definitions the storage engine works from:
- Entity type, field, field instance and field type definitions
- The static field-type table
- The schema registry for definition management
- Field change detection for schema evolution
- YAML/JSON schema documents

Invariants:
    - Entity types are immutable once registered
    - A field's columns cannot change once it has data
    - Deleted fields keep their uuid until purged
"""

from .compat import (
    ChangeKind,
    SchemaChange,
    check_compatibility,
    check_field_compatibility,
    generate_fingerprint,
    validate_field_update,
)
from .field_types import field_types, get_field_type, has_field_type, register_field_type
from .loader import SchemaDocument, load_schema_file, parse_schema
from .registry import DuplicateRegistrationError, RegistryFrozenError, SchemaRegistry
from .types import (
    CARDINALITY_UNLIMITED,
    LANGCODE_DEFAULT,
    LANGCODE_NOT_SPECIFIED,
    ColumnSpec,
    ColumnType,
    EntityKeys,
    EntityTypeDef,
    FieldDef,
    FieldInstanceDef,
    FieldSchema,
    FieldTypeDef,
    ForeignKeySpec,
    column,
    field,
)

__all__ = [
    # Types
    "CARDINALITY_UNLIMITED",
    "LANGCODE_DEFAULT",
    "LANGCODE_NOT_SPECIFIED",
    "ColumnSpec",
    "ColumnType",
    "EntityKeys",
    "EntityTypeDef",
    "FieldDef",
    "FieldInstanceDef",
    "FieldSchema",
    "FieldTypeDef",
    "ForeignKeySpec",
    "column",
    "field",
    # Field types
    "field_types",
    "get_field_type",
    "has_field_type",
    "register_field_type",
    # Registry
    "SchemaRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    # Compatibility
    "SchemaChange",
    "ChangeKind",
    "check_compatibility",
    "check_field_compatibility",
    "validate_field_update",
    "generate_fingerprint",
    # Schema files
    "SchemaDocument",
    "load_schema_file",
    "parse_schema",
]
