"""
fieldstore bootstrap.

EntityManager wires the components together:
- Settings (environment or explicit)
- The SQLite database
- The schema registry (given, or loaded from settings.schema_file)
- The hook dispatcher
- One storage controller per entity type, created on first use
- The field configuration manager

Invariants:
    - All controllers share one database, registry and hook dispatcher
    - Entity tables of every registered type exist after construction

Example:
    >>> with EntityManager(registry=registry) as manager:
    ...     storage = manager.get_storage("node")
    ...     node = storage.create({"type": "article", "title": "Hello"})
    ...     storage.save(node)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .config import FieldStoreSettings
from .errors import UnknownEntityTypeError
from .schema.loader import load_schema_file
from .schema.registry import SchemaRegistry
from .storage.controller import EntityStorageController
from .storage.database import Database
from .storage.field_manager import FieldManager
from .storage.hooks import HookDispatcher

logger = logging.getLogger(__name__)


class EntityManager:
    """Entry point owning the database and the storage controllers.

    Attributes:
        settings: Effective settings
        db: The shared database
        registry: The schema registry
        hooks: The shared hook dispatcher
        field_manager: Field configuration manager
    """

    def __init__(
        self,
        settings: Optional[FieldStoreSettings] = None,
        registry: Optional[SchemaRegistry] = None,
        hooks: Optional[HookDispatcher] = None,
    ) -> None:
        self.settings = settings or FieldStoreSettings()
        if registry is None:
            if self.settings.schema_file:
                registry = load_schema_file(self.settings.schema_file).build_registry()
                logger.info(
                    "Loaded schema file",
                    extra={"schema_file": self.settings.schema_file},
                )
            else:
                registry = SchemaRegistry()
        self.registry = registry
        self.hooks = hooks or HookDispatcher()

        self.db = Database(
            self.settings.database_path,
            wal_mode=self.settings.wal_mode,
            busy_timeout_ms=self.settings.busy_timeout_ms,
            cache_size_pages=self.settings.cache_size_pages,
            foreign_keys=self.settings.foreign_keys,
        )
        self.db.connect()
        self._storages: dict[str, EntityStorageController] = {}
        self.field_manager = FieldManager(self.registry, self.get_storage)

        if not self.registry.frozen:
            self.registry.freeze()
        for entity_type in self.registry.entity_types():
            self.get_storage(entity_type.name).install()
        logger.info(
            "Entity manager ready",
            extra={
                "database_path": self.settings.database_path,
                "entity_types": sorted(self._storages),
                "fingerprint": self.registry.fingerprint,
            },
        )

    def get_storage(self, entity_type: str) -> EntityStorageController:
        """Get the storage controller of an entity type.

        Raises:
            UnknownEntityTypeError: If the entity type is not registered
        """
        storage = self._storages.get(entity_type)
        if storage is None:
            if not self.registry.has_entity_type(entity_type):
                raise UnknownEntityTypeError(entity_type)
            storage = EntityStorageController(
                self.registry.get_entity_type(entity_type),
                self.db,
                self.registry,
                self.hooks,
                static_cache=self.settings.static_cache,
            )
            self._storages[entity_type] = storage
        return storage

    def close(self) -> None:
        self._storages.clear()
        self.db.close()

    def __enter__(self) -> EntityManager:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
