"""
fieldstore - relational storage for fieldable, revisionable, translatable entities.

Entities of an entity type live in up to four entity tables (base,
revision, data, revision data). Configurable fields attached to bundles
live in their own current and revision tables, one row per value.

Example:
    >>> from fieldstore import EntityManager, EntityTypeDef, EntityKeys, FieldInstanceDef, field
    >>> Node = EntityTypeDef(
    ...     name="node",
    ...     base_table="node",
    ...     revision_table="node_revision",
    ...     keys=EntityKeys(id="nid", revision="vid", bundle="type", uuid="uuid"),
    ...     base_fields=(field("title", "string"),),
    ... )
    >>> registry = SchemaRegistry()
    >>> registry.register_entity_type(Node)
    >>> with EntityManager(registry=registry) as manager:
    ...     body = manager.field_manager.create_field(field("body", "text_long", entity_type="node"))
    ...     manager.field_manager.create_instance(FieldInstanceDef(field=body, bundle="article"))
    ...     storage = manager.get_storage("node")
    ...     node = storage.create({"type": "article", "title": "Hello", "body": "Hi"})
    ...     storage.save(node)

Invariants:
    - Saves and deletes are atomic
    - Field table names are deterministic and at most 48 characters
    - A field's columns never change while it has data

Version: 1.0.0
"""

__version__ = "1.0.0"

from .errors import (
    CannotDeleteDefaultRevisionError,
    FieldStoreError,
    MissingBundleError,
    SchemaChangeForbiddenError,
    SchemaFileError,
    StorageError,
    UnknownEntityTypeError,
    UnknownFieldError,
    UnknownFieldTypeError,
)
from .entity import Entity, EntityTranslation, FieldItem, FieldItemList
from .schema import (
    CARDINALITY_UNLIMITED,
    LANGCODE_DEFAULT,
    LANGCODE_NOT_SPECIFIED,
    EntityKeys,
    EntityTypeDef,
    FieldDef,
    FieldInstanceDef,
    FieldTypeDef,
    SchemaRegistry,
    column,
    field,
    load_schema_file,
    parse_schema,
    register_field_type,
)
from .storage import Database, EntityStorageController, FieldManager, HookDispatcher, SaveResult
from .config import FieldStoreSettings, setup_logging
from .bootstrap import EntityManager

__all__ = [
    "__version__",
    # Errors
    "FieldStoreError",
    "MissingBundleError",
    "SchemaChangeForbiddenError",
    "CannotDeleteDefaultRevisionError",
    "StorageError",
    "UnknownEntityTypeError",
    "UnknownFieldError",
    "UnknownFieldTypeError",
    "SchemaFileError",
    # Entities
    "Entity",
    "EntityTranslation",
    "FieldItem",
    "FieldItemList",
    # Schema
    "CARDINALITY_UNLIMITED",
    "LANGCODE_DEFAULT",
    "LANGCODE_NOT_SPECIFIED",
    "EntityKeys",
    "EntityTypeDef",
    "FieldDef",
    "FieldInstanceDef",
    "FieldTypeDef",
    "SchemaRegistry",
    "column",
    "field",
    "load_schema_file",
    "parse_schema",
    "register_field_type",
    # Storage
    "Database",
    "EntityStorageController",
    "FieldManager",
    "HookDispatcher",
    "SaveResult",
    # Bootstrap
    "FieldStoreSettings",
    "setup_logging",
    "EntityManager",
]
