"""
Field configuration manager.

Keeps the registry and the field tables in step: every change to a
configurable field or instance is applied to storage first, then recorded
in the registry. If the storage step fails the registry is left as it was.

Deleting is two-phase:
    1. delete_field() / delete_instance() mark values deleted and move
       field tables aside; loads no longer see them
    2. purge_batch() removes the deleted values in bounded batches and,
       once a field has nothing left, drops its tables

Example:
    >>> manager = FieldManager(registry, entity_manager.get_storage)
    >>> tags = manager.create_field(field("tags", "taxonomy_term_reference",
    ...                                  entity_type="node", cardinality=-1))
    >>> manager.create_instance(FieldInstanceDef(field=tags, bundle="article"))
    >>> manager.delete_field(tags)
    >>> while manager.purge_batch(100):
    ...     pass
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import List

from ..schema.compat import SchemaChange, validate_field_update
from ..schema.registry import SchemaRegistry
from ..schema.types import FieldDef, FieldInstanceDef
from .controller import EntityStorageController

logger = logging.getLogger(__name__)

StorageLookup = Callable[[str], EntityStorageController]


class FieldManager:
    """Applies field configuration changes to the registry and storage.

    Args:
        registry: The definition registry
        storages: Returns the storage controller of an entity type
    """

    def __init__(self, registry: SchemaRegistry, storages: StorageLookup) -> None:
        self.registry = registry
        self._storages = storages

    def _storage(self, entity_type: str) -> EntityStorageController:
        return self._storages(entity_type)

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def create_field(self, field_def: FieldDef) -> FieldDef:
        """Register a field and create its tables.

        Returns:
            The registered definition (with its uuid)
        """
        field_def = self.registry.add_field(field_def)
        try:
            self._storage(field_def.entity_type).on_field_create(field_def)
        except Exception:
            self.registry.remove_field(field_def)
            raise
        logger.info(
            "Created field",
            extra={"entity_type": field_def.entity_type, "field_name": field_def.name},
        )
        return field_def

    def update_field(self, field_def: FieldDef) -> List[SchemaChange]:
        """Change a field definition.

        Returns:
            The detected changes

        Raises:
            KeyError: If the field is not registered
            SchemaChangeForbiddenError: If the change is breaking and the
                field has data
        """
        original = None
        if field_def.uuid:
            original = self.registry.get_field_by_uuid(field_def.uuid)
        if original is None:
            original = self.registry.get_field(field_def.entity_type, field_def.name)
        if original is None or original.deleted:
            raise KeyError(f"Field '{field_def.name}' is not registered")
        if field_def.uuid != original.uuid:
            field_def = field_def.with_changes(uuid=original.uuid)

        storage = self._storage(field_def.entity_type)
        changes = validate_field_update(original, field_def, storage.has_field_data(original))
        storage.on_field_update(field_def, original)
        self.registry.update_field(field_def)
        logger.info(
            "Updated field",
            extra={
                "entity_type": field_def.entity_type,
                "field_name": field_def.name,
                "changes": [c.kind.name for c in changes],
            },
        )
        return changes

    def delete_field(self, field_def: FieldDef) -> FieldDef:
        """Soft-delete a field and all of its instances.

        Returns:
            The deleted definition, whose tables now carry deleted names
        """
        live = self.registry.get_field(field_def.entity_type, field_def.name)
        if live is None:
            raise KeyError(f"Field '{field_def.name}' is not registered")
        self._storage(live.entity_type).on_field_delete(live)
        deleted = self.registry.mark_field_deleted(live)
        logger.info(
            "Deleted field",
            extra={"entity_type": live.entity_type, "field_name": live.name},
        )
        return deleted

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def create_instance(self, instance: FieldInstanceDef) -> FieldInstanceDef:
        """Attach a field to a bundle. Field tables already exist."""
        instance = self.registry.add_instance(instance)
        logger.info(
            "Created field instance",
            extra={
                "entity_type": instance.entity_type,
                "bundle": instance.bundle,
                "field_name": instance.field_name,
            },
        )
        return instance

    def delete_instance(self, instance: FieldInstanceDef, field_cleanup: bool = True) -> None:
        """Detach a field from a bundle, marking its values deleted.

        With field_cleanup, the field is deleted too once it has no live
        instance left.
        """
        live = self.registry.get_instance(instance.entity_type, instance.bundle, instance.field_name)
        if live is None:
            raise KeyError(
                f"Field '{instance.field_name}' is not attached to {instance.entity_type}:{instance.bundle}"
            )
        self._storage(live.entity_type).on_instance_delete(live)
        self.registry.mark_instance_deleted(live)
        logger.info(
            "Deleted field instance",
            extra={"entity_type": live.entity_type, "bundle": live.bundle, "field_name": live.field_name},
        )
        if field_cleanup and not self.registry.field_instances(live.field):
            self.delete_field(live.field)

    def rename_bundle(self, entity_type: str, bundle: str, new_bundle: str) -> None:
        """Rename a bundle in field tables, then in the registry."""
        self._storage(entity_type).on_bundle_rename(bundle, new_bundle)
        self.registry.rename_bundle(entity_type, bundle, new_bundle)

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    def purge_batch(self, batch_size: int) -> int:
        """Purge deleted field values, at most batch_size entities per instance.

        Instances with nothing left are removed; fields with no instance
        left get their tables dropped and are removed from the registry.

        Returns:
            Number of (entity, instance) pairs purged
        """
        purged = 0
        for instance in self.registry.instances(deleted_only=True):
            storage = self._storage(instance.entity_type)
            entity_ids = storage.deleted_field_entity_ids(instance.field, instance.bundle, batch_size)
            for entity_id in entity_ids:
                storage.purge_field_items(storage.stub_entity(entity_id, instance.bundle), instance)
                purged += 1
            if not storage.deleted_field_entity_ids(instance.field, instance.bundle, 1):
                self.registry.remove_instance(instance)
                logger.debug(
                    "Purged field instance",
                    extra={
                        "entity_type": instance.entity_type,
                        "bundle": instance.bundle,
                        "field_name": instance.field_name,
                    },
                )

        for field_def in self.registry.fields(include_deleted=True):
            if field_def.deleted and not self.registry.field_instances(field_def, include_deleted=True):
                self._storage(field_def.entity_type).on_field_purge(field_def)
                self.registry.remove_field(field_def)
                logger.info(
                    "Purged field",
                    extra={"entity_type": field_def.entity_type, "field_name": field_def.name},
                )
        return purged
