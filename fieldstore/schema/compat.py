"""
Field schema change detection for fieldstore.

A field's column schema is the on-disk contract of its tables. This module
classifies the differences between two versions of a field:
- Changing the field type or its resolved columns is breaking
- Indexes, foreign keys, cardinality and settings that do not touch the
  columns can change at any time

Invariants:
    - Breaking changes are only allowed while a field has no data
    - Index changes are applied in place on tables with data

How to change safely:
    - Run check_compatibility() between the deployed and the new schema
      file before deployment
    - Add a new field instead of changing the columns of a used one

Example:
    >>> from fieldstore.schema.compat import check_field_compatibility
    >>> changes = check_field_compatibility(original, updated)
    >>> breaking = [c for c in changes if c.is_breaking]
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from ..errors import SchemaChangeForbiddenError
from .registry import SchemaRegistry
from .types import FieldDef

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Types of field changes."""
    # Non-breaking changes (allowed)
    FIELD_ADDED = auto()
    FIELD_REMOVED = auto()
    INDEX_ADDED = auto()
    INDEX_REMOVED = auto()
    INDEX_CHANGED = auto()
    FOREIGN_KEY_CHANGED = auto()
    CARDINALITY_CHANGED = auto()
    TRANSLATABLE_CHANGED = auto()
    SETTINGS_CHANGED = auto()
    DESCRIPTION_CHANGED = auto()

    # Breaking changes (only while the field has no data)
    FIELD_TYPE_CHANGED = auto()
    COLUMNS_CHANGED = auto()

    @property
    def is_breaking(self) -> bool:
        """Whether this change kind is a breaking change."""
        return self in (ChangeKind.FIELD_TYPE_CHANGED, ChangeKind.COLUMNS_CHANGED)


@dataclass
class SchemaChange:
    """Represents a single change between two versions of a field.

    Attributes:
        kind: The type of change
        path: Path to the changed element (e.g., "article.body:index:format")
        old_value: Previous value (if applicable)
        new_value: New value (if applicable)
        message: Human-readable description of the change
    """
    kind: ChangeKind
    path: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    message: str = ""

    @property
    def is_breaking(self) -> bool:
        """Whether this is a breaking change."""
        return self.kind.is_breaking

    def __str__(self) -> str:
        status = "BREAKING" if self.is_breaking else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


def check_field_compatibility(original: FieldDef, field_def: FieldDef) -> List[SchemaChange]:
    """Compare two versions of the same field.

    Args:
        original: The stored definition
        field_def: The proposed definition

    Returns:
        List of SchemaChange objects describing all differences
    """
    changes: List[SchemaChange] = []
    path = f"{field_def.entity_type}.{field_def.name}"

    if original.field_type != field_def.field_type:
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_TYPE_CHANGED,
            path=path,
            old_value=original.field_type,
            new_value=field_def.field_type,
            message=f"Field type changed from '{original.field_type}' to '{field_def.field_type}'"
        ))

    old_schema = original.schema
    new_schema = field_def.schema

    old_columns = {name: spec.to_dict() for name, spec in old_schema.columns.items()}
    new_columns = {name: spec.to_dict() for name, spec in new_schema.columns.items()}
    if old_columns != new_columns:
        changes.append(SchemaChange(
            kind=ChangeKind.COLUMNS_CHANGED,
            path=path,
            old_value=old_columns,
            new_value=new_columns,
            message="Column schema changed"
        ))

    changes.extend(_check_indexes(old_schema.indexes, new_schema.indexes, path))

    old_fks = {name: fk.to_dict() for name, fk in old_schema.foreign_keys.items()}
    new_fks = {name: fk.to_dict() for name, fk in new_schema.foreign_keys.items()}
    if old_fks != new_fks:
        changes.append(SchemaChange(
            kind=ChangeKind.FOREIGN_KEY_CHANGED,
            path=path,
            old_value=old_fks,
            new_value=new_fks,
            message="Foreign keys changed"
        ))

    if original.cardinality != field_def.cardinality:
        changes.append(SchemaChange(
            kind=ChangeKind.CARDINALITY_CHANGED,
            path=path,
            old_value=original.cardinality,
            new_value=field_def.cardinality,
            message=f"Cardinality changed from {original.cardinality} to {field_def.cardinality}"
        ))

    if original.translatable != field_def.translatable:
        changes.append(SchemaChange(
            kind=ChangeKind.TRANSLATABLE_CHANGED,
            path=path,
            old_value=original.translatable,
            new_value=field_def.translatable,
            message=f"Translatable changed to {field_def.translatable}"
        ))

    if original.settings != field_def.settings:
        changes.append(SchemaChange(
            kind=ChangeKind.SETTINGS_CHANGED,
            path=path,
            old_value=dict(original.settings),
            new_value=dict(field_def.settings),
            message="Settings changed"
        ))

    if original.description != field_def.description:
        changes.append(SchemaChange(
            kind=ChangeKind.DESCRIPTION_CHANGED,
            path=path,
            message="Description changed"
        ))

    return changes


def _check_indexes(
    old_indexes: Dict[str, tuple],
    new_indexes: Dict[str, tuple],
    path: str,
) -> List[SchemaChange]:
    """Check index additions, removals and redefinitions."""
    changes: List[SchemaChange] = []

    for name, columns in old_indexes.items():
        if name not in new_indexes:
            changes.append(SchemaChange(
                kind=ChangeKind.INDEX_REMOVED,
                path=f"{path}:index:{name}",
                old_value=list(columns),
                message=f"Index '{name}' removed"
            ))
        elif tuple(new_indexes[name]) != tuple(columns):
            changes.append(SchemaChange(
                kind=ChangeKind.INDEX_CHANGED,
                path=f"{path}:index:{name}",
                old_value=list(columns),
                new_value=list(new_indexes[name]),
                message=f"Index '{name}' redefined"
            ))

    for name, columns in new_indexes.items():
        if name not in old_indexes:
            changes.append(SchemaChange(
                kind=ChangeKind.INDEX_ADDED,
                path=f"{path}:index:{name}",
                new_value=list(columns),
                message=f"Index '{name}' added"
            ))

    return changes


def validate_field_update(original: FieldDef, field_def: FieldDef, has_data: bool) -> List[SchemaChange]:
    """Check a field update against the stored data.

    Args:
        original: The stored definition
        field_def: The proposed definition
        has_data: Whether the field's tables hold any rows

    Returns:
        All detected changes

    Raises:
        SchemaChangeForbiddenError: If the update is breaking and data exists
    """
    changes = check_field_compatibility(original, field_def)
    breaking = [c for c in changes if c.is_breaking]
    if breaking and has_data:
        raise SchemaChangeForbiddenError(field_def.name, breaking)
    return changes


def check_compatibility(
    old_registry: SchemaRegistry,
    new_registry: SchemaRegistry,
) -> List[SchemaChange]:
    """Compare the configurable fields of two schema versions.

    Fields are matched by uuid, so a field deleted and recreated under the
    same name shows up as one removal and one addition.

    Args:
        old_registry: The baseline (currently deployed) schema
        new_registry: The new (to be deployed) schema

    Returns:
        List of SchemaChange objects describing all differences
    """
    changes: List[SchemaChange] = []

    old_fields = {f.uuid: f for f in old_registry.fields()}
    new_fields = {f.uuid: f for f in new_registry.fields()}

    for field_uuid, old_field in old_fields.items():
        if field_uuid not in new_fields:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_REMOVED,
                path=f"{old_field.entity_type}.{old_field.name}",
                old_value=field_uuid,
                message=f"Field '{old_field.name}' removed"
            ))
        else:
            changes.extend(check_field_compatibility(old_field, new_fields[field_uuid]))

    for field_uuid, new_field in new_fields.items():
        if field_uuid not in old_fields:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_ADDED,
                path=f"{new_field.entity_type}.{new_field.name}",
                new_value=field_uuid,
                message=f"Field '{new_field.name}' added"
            ))

    return changes


def generate_fingerprint(registry: SchemaRegistry) -> str:
    """Generate a schema fingerprint from a registry.

    Returns:
        Fingerprint string in format 'sha256:<hash>'
    """
    schema_dict = registry.to_dict()
    canonical = json.dumps(schema_dict, sort_keys=True, separators=(',', ':'))
    hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return f"sha256:{hash_bytes}"
