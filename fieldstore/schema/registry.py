"""
Schema Registry for fieldstore.

The SchemaRegistry is the central authority for all definitions.
It provides:
- Registration of entity types (frozen before serving)
- Runtime management of configurable fields and field instances
- Lookup of the field definitions that apply to one bundle
- Schema fingerprinting for consistency checks

Invariants:
    - Entity types are registered during startup and frozen before serving
    - Field configuration stays mutable after freeze (managed at runtime)
    - At most one live field per (entity type, name); deleted fields are
      kept under their uuid until purged
    - At most one live instance per (field, bundle)

How to change safely:
    - Register all entity types before calling freeze()
    - Go through FieldManager for field changes, so tables follow along
    - Never reuse a deleted field's uuid

Example:
    >>> from fieldstore.schema import SchemaRegistry, field
    >>> registry = SchemaRegistry()
    >>> registry.register_entity_type(Article)
    >>> body = registry.add_field(field("body", "text_long", entity_type="article"))
    >>> registry.add_instance(FieldInstanceDef(field=body, bundle="article"))
    >>> registry.freeze()
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid as uuid_lib
from typing import Dict, Iterator, List, Optional

from ..errors import UnknownEntityTypeError
from .types import EntityTypeDef, FieldDef, FieldInstanceDef

logger = logging.getLogger(__name__)


class RegistryFrozenError(Exception):
    """Raised when attempting to register an entity type on a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a duplicate definition."""
    pass


class SchemaRegistry:
    """Central registry for entity types, fields and field instances.

    Thread-safety:
        - Registration and field configuration changes use an internal lock
        - Lookups are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether entity type registration is closed
        fingerprint: SHA-256 hash of the schema (computed on freeze)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._entity_types: Dict[str, EntityTypeDef] = {}
        self._fields: Dict[str, FieldDef] = {}
        self._instances: Dict[str, FieldInstanceDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.RLock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    # ------------------------------------------------------------------
    # Entity types
    # ------------------------------------------------------------------

    def register_entity_type(self, entity_type: EntityTypeDef) -> None:
        """Register an entity type definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity type '{entity_type.name}': registry is frozen"
                )
            if entity_type.name in self._entity_types:
                raise DuplicateRegistrationError(
                    f"Entity type '{entity_type.name}' already registered"
                )
            self._entity_types[entity_type.name] = entity_type
            logger.debug(f"Registered entity type: {entity_type.name}")

    def get_entity_type(self, name: str) -> EntityTypeDef:
        """Get an entity type by name.

        Raises:
            UnknownEntityTypeError: If no such entity type is registered
        """
        try:
            return self._entity_types[name]
        except KeyError:
            raise UnknownEntityTypeError(name) from None

    def has_entity_type(self, name: str) -> bool:
        return name in self._entity_types

    def entity_types(self) -> Iterator[EntityTypeDef]:
        """Iterate over all registered entity types."""
        yield from self._entity_types.values()

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def add_field(self, field_def: FieldDef) -> FieldDef:
        """Add a configurable field.

        A uuid is assigned when the definition has none.

        Returns:
            The stored definition

        Raises:
            UnknownEntityTypeError: If the owning entity type is unknown
            ValueError: If the entity type is not fieldable or the name
                shadows a base field
            DuplicateRegistrationError: If a live field with that name exists
        """
        entity_type = self.get_entity_type(field_def.entity_type)
        if not entity_type.fieldable:
            raise ValueError(f"Entity type '{entity_type.name}' is not fieldable")
        if field_def.name in entity_type.field_definitions():
            raise ValueError(
                f"Field '{field_def.name}' shadows a base field of entity type '{entity_type.name}'"
            )
        if not field_def.uuid:
            field_def = field_def.with_changes(uuid=str(uuid_lib.uuid4()))
        with self._lock:
            if field_def.uuid in self._fields:
                raise DuplicateRegistrationError(f"Field uuid '{field_def.uuid}' already registered")
            if self.get_field(field_def.entity_type, field_def.name) is not None:
                raise DuplicateRegistrationError(
                    f"Field '{field_def.name}' already exists on entity type '{field_def.entity_type}'"
                )
            self._fields[field_def.uuid] = field_def
        logger.debug(f"Added field: {field_def.entity_type}.{field_def.name} (uuid={field_def.uuid})")
        return field_def

    def update_field(self, field_def: FieldDef) -> FieldDef:
        """Replace a field definition, keyed by uuid.

        Instances of the field are re-pointed to the new definition.

        Raises:
            KeyError: If the field is not registered
            ValueError: If the entity type or name would change
        """
        with self._lock:
            original = self._fields.get(field_def.uuid)
            if original is None:
                raise KeyError(f"Field uuid '{field_def.uuid}' is not registered")
            if (original.entity_type, original.name) != (field_def.entity_type, field_def.name):
                raise ValueError(
                    f"Field '{original.name}' cannot change its name or entity type"
                )
            self._fields[field_def.uuid] = field_def
            for key, instance in list(self._instances.items()):
                if instance.field.uuid == field_def.uuid:
                    self._instances[key] = instance.with_changes(field=field_def)
        return field_def

    def mark_field_deleted(self, field_def: FieldDef) -> FieldDef:
        """Soft-delete a field and all of its instances."""
        with self._lock:
            deleted = self._fields[field_def.uuid].with_changes(deleted=True)
            self._fields[deleted.uuid] = deleted
            for key, instance in list(self._instances.items()):
                if instance.field.uuid == deleted.uuid:
                    self._instances[key] = instance.with_changes(field=deleted, deleted=True)
        logger.debug(f"Marked field deleted: {deleted.entity_type}.{deleted.name} (uuid={deleted.uuid})")
        return deleted

    def remove_field(self, field_def: FieldDef) -> None:
        """Forget a field entirely (after its data has been purged)."""
        with self._lock:
            self._fields.pop(field_def.uuid, None)
            for key, instance in list(self._instances.items()):
                if instance.field.uuid == field_def.uuid:
                    del self._instances[key]

    def get_field(self, entity_type: str, name: str) -> Optional[FieldDef]:
        """Get the live field with that name on an entity type."""
        for f in self._fields.values():
            if f.entity_type == entity_type and f.name == name and not f.deleted:
                return f
        return None

    def get_field_by_uuid(self, field_uuid: str) -> Optional[FieldDef]:
        return self._fields.get(field_uuid)

    def fields(self, entity_type: Optional[str] = None, include_deleted: bool = False) -> List[FieldDef]:
        """List configurable fields, optionally restricted to one entity type."""
        return [
            f for f in self._fields.values()
            if (entity_type is None or f.entity_type == entity_type)
            and (include_deleted or not f.deleted)
        ]

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def add_instance(self, instance: FieldInstanceDef) -> FieldInstanceDef:
        """Attach a field to a bundle.

        Raises:
            KeyError: If the field is not registered
            ValueError: If the field is deleted or the bundle is invalid
                for an entity type without bundles
            DuplicateRegistrationError: If the field is already attached
        """
        entity_type = self.get_entity_type(instance.entity_type)
        if not entity_type.has_bundles and instance.bundle != entity_type.name:
            raise ValueError(
                f"Entity type '{entity_type.name}' has no bundles; instances must use bundle "
                f"'{entity_type.name}'"
            )
        with self._lock:
            stored_field = self._fields.get(instance.field.uuid)
            if stored_field is None:
                raise KeyError(f"Field '{instance.field_name}' is not registered")
            if stored_field.deleted:
                raise ValueError(f"Field '{instance.field_name}' is deleted")
            if self.get_instance(instance.entity_type, instance.bundle, instance.field_name):
                raise DuplicateRegistrationError(
                    f"Field '{instance.field_name}' is already attached to "
                    f"{instance.entity_type}:{instance.bundle}"
                )
            instance = instance.with_changes(
                field=stored_field,
                uuid=instance.uuid or str(uuid_lib.uuid4()),
            )
            self._instances[instance.uuid] = instance
        logger.debug(
            f"Added instance: {instance.entity_type}.{instance.bundle}.{instance.field_name}"
        )
        return instance

    def mark_instance_deleted(self, instance: FieldInstanceDef) -> FieldInstanceDef:
        with self._lock:
            deleted = self._instances[instance.uuid].with_changes(deleted=True)
            self._instances[deleted.uuid] = deleted
        return deleted

    def remove_instance(self, instance: FieldInstanceDef) -> None:
        with self._lock:
            self._instances.pop(instance.uuid, None)

    def get_instance(self, entity_type: str, bundle: str, field_name: str) -> Optional[FieldInstanceDef]:
        """Get the live instance of a field on a bundle."""
        for instance in self._instances.values():
            if (
                instance.entity_type == entity_type
                and instance.bundle == bundle
                and instance.field_name == field_name
                and not instance.deleted
            ):
                return instance
        return None

    def get_bundle_instances(
        self,
        entity_type: str,
        bundle: str,
        include_deleted: bool = False,
    ) -> List[FieldInstanceDef]:
        """List the instances attached to one bundle."""
        return [
            i for i in self._instances.values()
            if i.entity_type == entity_type and i.bundle == bundle
            and (include_deleted or not i.deleted)
        ]

    def field_instances(self, field_def: FieldDef, include_deleted: bool = False) -> List[FieldInstanceDef]:
        """List the instances of one field."""
        return [
            i for i in self._instances.values()
            if i.field.uuid == field_def.uuid and (include_deleted or not i.deleted)
        ]

    def instances(self, include_deleted: bool = False, deleted_only: bool = False) -> List[FieldInstanceDef]:
        return [
            i for i in self._instances.values()
            if (i.deleted if deleted_only else (include_deleted or not i.deleted))
        ]

    def rename_bundle(self, entity_type: str, old_bundle: str, new_bundle: str) -> List[FieldInstanceDef]:
        """Move every instance (deleted ones included) to a new bundle name.

        Returns:
            The renamed instances
        """
        renamed: List[FieldInstanceDef] = []
        with self._lock:
            for key, instance in list(self._instances.items()):
                if instance.entity_type == entity_type and instance.bundle == old_bundle:
                    self._instances[key] = instance.with_changes(bundle=new_bundle)
                    renamed.append(self._instances[key])
        logger.debug(f"Renamed bundle {entity_type}:{old_bundle} -> {new_bundle} ({len(renamed)} instances)")
        return renamed

    def field_definitions(self, entity_type: str, bundle: str) -> Dict[str, FieldDef]:
        """All field definitions that apply to one bundle.

        Returns:
            Base and key fields first, then the field of every live
            instance on the bundle
        """
        definitions = dict(self.get_entity_type(entity_type).field_definitions())
        for instance in self.get_bundle_instances(entity_type, bundle):
            definitions[instance.field_name] = instance.field
        return definitions

    # ------------------------------------------------------------------
    # Freeze / serialization
    # ------------------------------------------------------------------

    def freeze(self) -> str:
        """Freeze entity type registration and compute the fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")
            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Schema registry frozen with {len(self._entity_types)} entity types, "
                f"{len(self.fields())} fields, fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the canonical JSON representation."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation.

        Entries are sorted for determinism.
        """
        fields = sorted(self._fields.values(), key=lambda f: (f.entity_type, f.name, f.uuid))
        instances = sorted(
            self._instances.values(),
            key=lambda i: (i.entity_type, i.bundle, i.field_name, i.uuid),
        )
        return {
            "entity_types": [self._entity_types[name].to_dict() for name in sorted(self._entity_types)],
            "fields": [f.to_dict() for f in fields],
            "instances": [i.to_dict() for i in instances],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> SchemaRegistry:
        """Create registry from dictionary representation (not frozen).

        Deleted fields and instances are restored as deleted.
        """
        registry = cls()
        for entity_data in data.get("entity_types", []):
            registry.register_entity_type(EntityTypeDef.from_dict(entity_data))
        for field_data in data.get("fields", []):
            field_def = FieldDef.from_dict(field_data)
            if field_def.deleted:
                registry._fields[field_def.uuid] = field_def
            else:
                registry.add_field(field_def)
        for instance_data in data.get("instances", []):
            field_def = registry._resolve_instance_field(instance_data)
            instance = FieldInstanceDef.from_dict(instance_data, field_def)
            if instance.deleted or field_def.deleted:
                instance = instance.with_changes(uuid=instance.uuid or str(uuid_lib.uuid4()))
                registry._instances[instance.uuid] = instance
            else:
                registry.add_instance(instance)
        return registry

    def _resolve_instance_field(self, instance_data: dict) -> FieldDef:
        field_uuid = instance_data.get("field_uuid")
        if field_uuid and field_uuid in self._fields:
            return self._fields[field_uuid]
        field_def = self.get_field(instance_data["entity_type"], instance_data["field"])
        if field_def is None:
            raise KeyError(
                f"Instance references unknown field "
                f"'{instance_data['entity_type']}.{instance_data['field']}'"
            )
        return field_def

    @classmethod
    def from_json(cls, json_str: str) -> SchemaRegistry:
        return cls.from_dict(json.loads(json_str))

    def validate_all(self) -> list[str]:
        """Validate all registered definitions for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for f in self._fields.values():
            if f.entity_type not in self._entity_types:
                errors.append(f"Field '{f.name}' references unknown entity type '{f.entity_type}'")
            target = f.get_setting("target_type") if f.field_type == "entity_reference" else None
            if target and target not in self._entity_types:
                errors.append(f"Field '{f.name}' references unknown target type '{target}'")
        for i in self._instances.values():
            if i.field.uuid not in self._fields:
                errors.append(
                    f"Instance {i.entity_type}:{i.bundle}.{i.field_name} references an unknown field"
                )
        return errors
