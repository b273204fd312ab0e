"""
Error types for fieldstore.

This module defines the exception taxonomy of the storage engine:
- FieldStoreError: Base exception
- MissingBundleError: Entity creation without a bundle value
- SchemaChangeForbiddenError: Column change on a field that has data
- CannotDeleteDefaultRevisionError: Deleting the active revision
- StorageError: Backend failure during save/delete (transaction rolled back)
- UnknownEntityTypeError / UnknownFieldTypeError / UnknownFieldError: lookups
- SchemaFileError: Invalid YAML/JSON schema document

Invariants:
    - All errors inherit from FieldStoreError
    - Errors include context for debugging
    - StorageError always carries the original cause
    - Nothing in the core retries; callers decide retry policy
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .schema.compat import SchemaChange


class FieldStoreError(Exception):
    """Base exception for all fieldstore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "FIELDSTORE_ERROR"
        self.details = details or {}


class MissingBundleError(FieldStoreError):
    """Entity creation for a bundle-keyed type without a bundle value."""

    def __init__(self, entity_type: str, bundle_key: str) -> None:
        super().__init__(
            f"Missing bundle for entity type {entity_type}",
            code="MISSING_BUNDLE",
            details={"entity_type": entity_type, "bundle_key": bundle_key},
        )
        self.entity_type = entity_type
        self.bundle_key = bundle_key


class SchemaChangeForbiddenError(FieldStoreError):
    """Attempted column-schema change on a field that already has data.

    Only index additions/removals are allowed once data exists. A full
    schema change requires an explicit data migration.

    Attributes:
        field_name: The field being updated
        changes: The breaking changes that were detected
    """

    def __init__(
        self,
        field_name: str,
        changes: Optional[List[SchemaChange]] = None,
    ) -> None:
        changes = changes or []
        msg = f"The SQL storage cannot change the schema for an existing field with data: '{field_name}'"
        if changes:
            msg += "\n" + "\n".join(str(c) for c in changes)
        super().__init__(
            msg,
            code="SCHEMA_CHANGE_FORBIDDEN",
            details={"field_name": field_name, "changes": [str(c) for c in changes]},
        )
        self.field_name = field_name
        self.changes = changes


class CannotDeleteDefaultRevisionError(FieldStoreError):
    """Attempted deletion of the revision currently marked default."""

    def __init__(self, entity_type: str, revision_id: int) -> None:
        super().__init__(
            "Default revision can not be deleted",
            code="CANNOT_DELETE_DEFAULT_REVISION",
            details={"entity_type": entity_type, "revision_id": revision_id},
        )
        self.entity_type = entity_type
        self.revision_id = revision_id


class StorageError(FieldStoreError):
    """A save or delete failed and its transaction was rolled back.

    Raised with ``raise ... from cause`` so ``__cause__`` is also set.

    Attributes:
        entity_type: Entity type of the failed operation
        cause: The original exception
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={
                "entity_type": entity_type,
                "cause": type(cause).__name__ if cause is not None else None,
            },
        )
        self.entity_type = entity_type
        self.cause = cause


class UnknownEntityTypeError(FieldStoreError):
    """Entity type is not registered."""

    def __init__(self, entity_type: str) -> None:
        super().__init__(
            f"Unknown entity type '{entity_type}'",
            code="UNKNOWN_ENTITY_TYPE",
            details={"entity_type": entity_type},
        )
        self.entity_type = entity_type


class UnknownFieldTypeError(FieldStoreError):
    """Field type identifier is not in the field-type table.

    Attributes:
        field_type: The unknown identifier
        suggestions: Similar registered identifiers
    """

    def __init__(self, field_type: str, suggestions: Optional[List[str]] = None) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field type '{field_type}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(
            msg,
            code="UNKNOWN_FIELD_TYPE",
            details={"field_type": field_type, "suggestions": suggestions},
        )
        self.field_type = field_type
        self.suggestions = suggestions


class UnknownFieldError(FieldStoreError):
    """Unknown field on an entity.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        entity_type: The entity type being accessed
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        entity_type: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' on entity type '{entity_type}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "entity_type": entity_type,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.entity_type = entity_type
        self.suggestions = suggestions


class SchemaFileError(FieldStoreError):
    """Schema document failed to parse or validate."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        errors = errors or []
        if errors:
            message = message + ":\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(
            message,
            code="SCHEMA_FILE_ERROR",
            details={"errors": errors},
        )
        self.errors = errors
