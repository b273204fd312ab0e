"""
Storage controller for fieldable entities.

One EntityStorageController persists the entities of one entity type:
- Entity tables (base, revision, data, revision data) through EntityMapper
- Configurable field values in dedicated per-field tables
- Lifecycle hooks around every write
- Field table lifecycle (create, update, delete, purge) for the field
  configuration layer

Invariants:
    - save() and delete() run in one transaction; on any exception the
      transaction is rolled back and StorageError is raised from the cause
    - The base table always mirrors the default revision
    - The current field table only holds default-revision values; the
      revision field table holds values of every revision
    - Field deltas are contiguous from 0 per (entity, language)
    - The entity cache is invalidated inside the transaction that
      made it stale

How to change safely:
    - Keep the order of hooks and writes in _do_save(); hooks observe it
    - Never write field tables except through _save_field_items()

Example:
    >>> storage = EntityStorageController(Article, db, registry, hooks)
    >>> storage.install()
    >>> article = storage.create({"title": "Hello", "body": "Hi"})
    >>> storage.save(article)
    <SaveResult.SAVED_NEW: 1>
    >>> storage.load(article.id).get("title").value
    'Hello'
"""

from __future__ import annotations

import difflib
import logging
import uuid as uuid_lib
from collections.abc import Iterable, Mapping
from enum import IntEnum
from typing import Any, Optional, Union

from ..entity import Entity
from ..errors import (
    CannotDeleteDefaultRevisionError,
    MissingBundleError,
    SchemaChangeForbiddenError,
    StorageError,
    UnknownFieldError,
)
from ..schema.compat import check_field_compatibility
from ..schema.registry import SchemaRegistry
from ..schema.types import (
    LANGCODE_DEFAULT,
    LANGCODE_NOT_SPECIFIED,
    EntityTypeDef,
    FieldDef,
    FieldInstanceDef,
)
from .cache import EntityCache
from .codec import FieldValueCodec
from .database import Database, quote
from .field_schema import field_columns, field_indexes, field_table_specs
from .hooks import HookDispatcher
from .mapper import IS_DEFAULT_REVISION, EntityMapper
from .naming import field_index_name, field_revision_table_name, field_table_name

logger = logging.getLogger(__name__)


class SaveResult(IntEnum):
    """Outcome of save()."""

    SAVED_NEW = 1
    SAVED_UPDATED = 2


class EntityStorageController:
    """Persists the entities of one entity type.

    Thread safety:
        Not thread-safe. One controller (and its Database) serves one
        thread; the relational backend provides isolation between processes.

    Attributes:
        entity_type: The entity type definition
        db: The relational backend
        registry: Source of field and instance definitions
        hooks: Lifecycle hook dispatcher
    """

    def __init__(
        self,
        entity_type: EntityTypeDef,
        db: Database,
        registry: SchemaRegistry,
        hooks: Optional[HookDispatcher] = None,
        static_cache: bool = True,
    ) -> None:
        self.entity_type = entity_type
        self.db = db
        self.registry = registry
        self.hooks = hooks or HookDispatcher()
        self.keys = entity_type.keys
        self.mapper = EntityMapper(entity_type, self._definitions_for)
        self._cache = EntityCache(enabled=static_cache and entity_type.static_cache)

    @property
    def entity_type_id(self) -> str:
        return self.entity_type.name

    @property
    def base_table(self) -> str:
        return self.entity_type.base_table

    @property
    def revision_table(self) -> str:
        return self.entity_type.revision_table

    @property
    def data_table(self) -> str:
        return self.entity_type.data_table

    @property
    def revision_data_table(self) -> str:
        return self.entity_type.revision_data_table

    def _definitions_for(self, bundle: str) -> dict[str, FieldDef]:
        return self.registry.field_definitions(self.entity_type.name, bundle)

    def _log_extra(self, **extra: Any) -> dict[str, Any]:
        return {"entity_type": self.entity_type.name, **extra}

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def install(self) -> None:
        """Create the entity tables and the tables of every live field.

        Tables that already exist are left alone.
        """
        schema = self.db.schema()
        with self.db.transaction():
            for table_key, (name, spec) in self.mapper.tables.items():
                if not schema.table_exists(name):
                    schema.create_table(name, spec)
            if self.entity_type.fieldable:
                for field_def in self.registry.fields(self.entity_type.name):
                    if not schema.table_exists(field_table_name(field_def)):
                        self.on_field_create(field_def)
        logger.debug("Installed entity tables", extra=self._log_extra(tables=list(self.mapper.tables)))

    # ------------------------------------------------------------------
    # Create / load
    # ------------------------------------------------------------------

    def create(self, values: Optional[Mapping[str, Any]] = None) -> Entity:
        """Create a new, unsaved entity.

        Fields present in values are set; fields absent from values get
        their default value; fields given as None stay empty.

        Raises:
            MissingBundleError: If the type has bundles and none is given
            UnknownFieldError: If values name a field the bundle lacks
        """
        values = dict(values or {})
        bundle_key = self.keys.bundle
        if bundle_key:
            if values.get(bundle_key) is None:
                raise MissingBundleError(self.entity_type.name, bundle_key)
            bundle = str(values[bundle_key])
        else:
            bundle = self.entity_type.name

        definitions = self._definitions_for(bundle)
        for name in values:
            if name not in definitions:
                suggestions = difflib.get_close_matches(name, list(definitions), n=3)
                raise UnknownFieldError(name, self.entity_type.name, suggestions)

        instances = {
            i.field_name: i
            for i in self.registry.get_bundle_instances(self.entity_type.name, bundle)
        }
        entity = Entity(self.entity_type, definitions, bundle=bundle)
        for name, definition in definitions.items():
            if values.get(name) is not None:
                entity.set(name, values[name])
            elif name not in values:
                default = instances[name].effective_default() if name in instances else definition.default_value
                entity.get(name).apply_default_value(default)

        if self.keys.uuid and entity.uuid is None:
            entity.set(self.keys.uuid, str(uuid_lib.uuid4()))
        if self.keys.langcode and not entity.get(self.keys.langcode).value:
            entity.set(self.keys.langcode, LANGCODE_NOT_SPECIFIED)

        self.hooks.invoke("create", entity)
        return entity

    def load(self, entity_id: Any) -> Optional[Entity]:
        return self.load_multiple([entity_id]).get(entity_id)

    def load_multiple(self, ids: Optional[Iterable[Any]] = None) -> dict[Any, Entity]:
        """Load entities by id, or all entities when ids is None.

        Returns:
            Entity id -> Entity, in the order of ids, without unknown ids
        """
        passed = list(ids) if ids is not None else None
        entities: dict[Any, Entity] = {}
        remaining = passed

        if passed:
            entities.update(self._cache.get(passed))
            remaining = [i for i in passed if i not in entities]

        queried: dict[Any, Entity] = {}
        if passed is None or remaining:
            queried = self._load_from_storage(remaining)
            entities.update(queried)

        if queried:
            self._cache.set(queried)

        if passed is not None:
            return {i: entities[i] for i in dict.fromkeys(passed) if i in entities}
        return entities

    def load_revision(self, revision_id: Any) -> Optional[Entity]:
        """Load one specific revision.

        The entity's default-revision flag tells whether it is the
        current revision. Revisions are never cached.
        """
        if not self.revision_table:
            return None
        entities = self._load_from_storage(None, revision_id=revision_id)
        return next(iter(entities.values()), None)

    def load_unchanged(self, entity_id: Any) -> Optional[Entity]:
        """Load the stored version of an entity, bypassing the cache."""
        self.reset_cache([entity_id])
        return self.load(entity_id)

    def load_by_properties(self, values: Optional[Mapping[str, Any]] = None) -> dict[Any, Entity]:
        """Load entities whose properties match exactly.

        Keys may name entity-table columns or configurable fields (matched
        on their main property). For types with a data table, only rows in
        the original language match unless default_langcode is given;
        default_langcode=None matches any language.

        Raises:
            UnknownFieldError: If a key is neither a column nor a field
        """
        values = dict(values or {})
        if self.data_table:
            if "default_langcode" not in values:
                values["default_langcode"] = 1
            elif values["default_langcode"] is None:
                del values["default_langcode"]

        id_key = quote(self.keys.id)
        base_columns = set(self.mapper.table_columns("base_table"))
        data_columns = set(self.mapper.table_columns("data_table")) if self.data_table else set()
        sql = f"SELECT DISTINCT base.{id_key} AS id FROM {quote(self.base_table)} base"
        if self.data_table:
            sql += f" JOIN {quote(self.data_table)} data ON data.{id_key} = base.{id_key}"

        clauses: list[str] = []
        params: list[Any] = []
        for name, value in values.items():
            if name in data_columns and name != self.keys.id:
                target = f"data.{quote(name)}"
            elif name in base_columns:
                target = f"base.{quote(name)}"
            else:
                field_def = self.registry.get_field(self.entity_type.name, name)
                if field_def is None:
                    known = sorted(base_columns | data_columns | {
                        f.name for f in self.registry.fields(self.entity_type.name)
                    })
                    raise UnknownFieldError(
                        name, self.entity_type.name, difflib.get_close_matches(name, known, n=3)
                    )
                column = field_columns(field_def)[field_def.main_property]
                condition, condition_params = self._condition(quote(column), value)
                clauses.append(
                    f"base.{id_key} IN (SELECT entity_id FROM {quote(field_table_name(field_def))} "
                    f"WHERE deleted = 0 AND {condition})"
                )
                params.extend(condition_params)
                continue
            condition, condition_params = self._condition(target, value)
            clauses.append(condition)
            params.extend(condition_params)

        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY base.{id_key}"
        ids = [row["id"] for row in self.db.query(sql, params)]
        return self.load_multiple(ids) if ids else {}

    @staticmethod
    def _condition(target: str, value: Any) -> tuple[str, list[Any]]:
        if isinstance(value, (list, tuple, set)):
            values = list(value)
            if not values:
                return "0", []
            return f"{target} IN ({', '.join('?' for _ in values)})", values
        if value is None:
            return f"{target} IS NULL", []
        return f"{target} = ?", [value]

    def _load_from_storage(self, ids: Optional[list[Any]], revision_id: Any = None) -> dict[Any, Entity]:
        records = self._build_query(ids, revision_id)
        if not records:
            return {}
        data_records = self._query_data_records(records) if self.data_table else []
        entities = self.mapper.from_storage_records(records, data_records)
        self._post_load(entities, load_current=revision_id is None)
        return entities

    def _build_query(self, ids: Optional[list[Any]], revision_id: Any = None) -> list[dict[str, Any]]:
        """Select base rows joined with their default (or one given) revision."""
        id_key = self.keys.id
        revision_key = self.keys.revision
        base_columns = self.mapper.table_columns("base_table")
        revision_columns: list[str] = []
        if self.revision_table:
            revision_columns = [c for c in self.mapper.table_columns("revision_table") if c != id_key]
            base_columns = [c for c in base_columns if c not in revision_columns]

        select = [f"base.{quote(c)}" for c in base_columns]
        select += [f"revision.{quote(c)}" for c in revision_columns]
        params: list[Any] = []
        joins = ""
        if self.revision_table:
            select.append(
                f"base.{quote(revision_key)} = revision.{quote(revision_key)} AS {IS_DEFAULT_REVISION}"
            )
            if revision_id is not None:
                joins = (
                    f" JOIN {quote(self.revision_table)} revision"
                    f" ON revision.{quote(id_key)} = base.{quote(id_key)}"
                    f" AND revision.{quote(revision_key)} = ?"
                )
                params.append(revision_id)
            else:
                joins = (
                    f" JOIN {quote(self.revision_table)} revision"
                    f" ON revision.{quote(revision_key)} = base.{quote(revision_key)}"
                )

        sql = f"SELECT {', '.join(select)} FROM {quote(self.base_table)} base{joins}"
        if ids:
            sql += f" WHERE base.{quote(id_key)} IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        sql += f" ORDER BY base.{quote(id_key)}"
        return self.db.query(sql, params)

    def _query_data_records(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Per-language rows of the loaded revisions."""
        id_key = self.keys.id
        conditions: dict[str, Any] = {id_key: [r[id_key] for r in records]}
        if self.revision_data_table:
            table = self.revision_data_table
            conditions[self.keys.revision] = [r[self.keys.revision] for r in records]
        else:
            table = self.data_table
        return self.db.select(table, conditions, order_by=[id_key])

    def _post_load(self, entities: dict[Any, Entity], load_current: bool = True) -> None:
        if self.entity_type.fieldable:
            self._load_field_items(entities, load_current)
        self.hooks.invoke_load(self.entity_type.name, entities)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, entity: Entity) -> SaveResult:
        """Persist an entity in one transaction.

        Returns:
            SaveResult.SAVED_NEW or SaveResult.SAVED_UPDATED

        Raises:
            StorageError: On any failure, after the transaction was rolled back
        """
        state = (entity.is_new(), entity.id, entity.revision_id, entity.is_new_revision())
        try:
            with self.db.transaction():
                result = self._do_save(entity)
        except Exception as e:
            self._restore(entity, state)
            logger.error(
                f"Failed to save {self.entity_type.name} entity: {e}",
                exc_info=True,
                extra=self._log_extra(entity_id=entity.id),
            )
            raise StorageError(str(e), entity_type=self.entity_type.name, cause=e) from e

        logger.debug(
            "Saved entity",
            extra=self._log_extra(
                entity_id=entity.id,
                revision_id=entity.revision_id,
                result=result.name,
            ),
        )
        return result

    def _restore(self, entity: Entity, state: tuple) -> None:
        """Put back the identity of an entity whose save was rolled back."""
        was_new, entity_id, revision_id, new_revision = state
        self.reset_cache()
        entity.set(self.keys.id, entity_id)
        if self.keys.revision:
            entity.set(self.keys.revision, revision_id)
            entity.set_new_revision(new_revision)
        entity.enforce_is_new(was_new and entity_id is not None)

    def _do_save(self, entity: Entity) -> SaveResult:
        if not entity.is_new() and entity.original is None:
            entity.original = self.load_unchanged(entity.id)

        self.hooks.invoke_field_method("pre_save", entity)
        self.hooks.invoke("presave", entity)

        record = self.mapper.to_storage_record(entity)

        if not entity.is_new():
            if entity.is_default_revision():
                self.db.update(self.base_table, record.values, {self.keys.id: entity.id})
            if self.revision_table:
                self._save_revision(entity)
            if self.data_table:
                self._save_property_data(entity)
            if self.revision_data_table:
                self._save_property_data(entity, "revision_data_table")
            entity.set_new_revision(False)
            self.hooks.invoke_field_method("update", entity)
            self._save_field_items(entity, update=True)
            self.reset_cache([entity.id])
            self.hooks.invoke("update", entity)
            if self.data_table:
                self._invoke_translation_hooks(entity)
            result = SaveResult.SAVED_UPDATED
        else:
            # Still seen as new after receiving its id, while its data is stored.
            entity.enforce_is_new()
            entity.set(self.keys.id, self.db.insert(self.base_table, record.values))
            if self.revision_table:
                entity.set_new_revision()
                self._save_revision(entity)
            if self.data_table:
                self._save_property_data(entity)
            if self.revision_data_table:
                self._save_property_data(entity, "revision_data_table")
            entity.enforce_is_new(False)
            if self.revision_table:
                entity.set_new_revision(False)
            self.hooks.invoke_field_method("insert", entity)
            self._save_field_items(entity, update=False)
            self.reset_cache()
            self.hooks.invoke("insert", entity)
            result = SaveResult.SAVED_NEW

        entity.original = None
        return result

    def _save_revision(self, entity: Entity) -> Any:
        """Insert a new revision row or update the current one.

        Returns:
            The revision id
        """
        revision_key = self.keys.revision
        record = self.mapper.to_storage_record(entity, "revision_table")
        if entity.is_new_revision():
            record.values.pop(revision_key, None)
            revision_id = self.db.insert(self.revision_table, record.values)
            if entity.is_default_revision():
                self.db.update(self.base_table, {revision_key: revision_id}, {self.keys.id: entity.id})
        else:
            revision_id = record[revision_key]
            self.db.update(self.revision_table, record.values, {revision_key: revision_id})
        entity.set(revision_key, revision_id)
        return revision_id

    def _save_property_data(self, entity: Entity, table_key: str = "data_table") -> None:
        """Replace the per-language rows of an entity (or of its revision)."""
        table = self.mapper.table_name(table_key)
        revision = table_key != "data_table"
        if not revision or not entity.is_new_revision():
            if revision:
                self.db.delete(table, {self.keys.revision: entity.revision_id})
            else:
                self.db.delete(table, {self.keys.id: entity.id})
        for langcode in entity.translation_languages():
            record = self.mapper.to_data_record(entity.get_translation(langcode), table_key)
            self.db.insert(table, record.values)

    def _invoke_translation_hooks(self, entity: Entity) -> None:
        original = entity.original
        if original is None:
            return
        current = entity.translation_languages()
        previous = original.translation_languages()
        for langcode in current:
            if langcode not in previous:
                self.hooks.invoke("translation_insert", entity, langcode)
        for langcode in previous:
            if langcode not in current:
                self.hooks.invoke("translation_delete", original, langcode)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, entities: Union[Iterable[Entity], Mapping[Any, Entity]]) -> None:
        """Delete entities and all of their rows in one transaction.

        Raises:
            StorageError: On any failure, after the transaction was rolled back
        """
        if isinstance(entities, Mapping):
            entities = list(entities.values())
        else:
            entities = list(entities)
        if not entities:
            return

        ids = [e.id for e in entities]
        try:
            with self.db.transaction():
                for entity in entities:
                    self.hooks.invoke("predelete", entity)

                id_key = self.keys.id
                self.db.delete(self.base_table, {id_key: ids})
                if self.revision_table:
                    self.db.delete(self.revision_table, {id_key: ids})
                if self.data_table:
                    self.db.delete(self.data_table, {id_key: ids})
                if self.revision_data_table:
                    self.db.delete(self.revision_data_table, {id_key: ids})

                for entity in entities:
                    self.hooks.invoke_field_method("delete", entity)
                    self._delete_field_items(entity)

                self.reset_cache(ids)
                for entity in entities:
                    self.hooks.invoke("delete", entity)
        except Exception as e:
            logger.error(
                f"Failed to delete {self.entity_type.name} entities: {e}",
                exc_info=True,
                extra=self._log_extra(entity_ids=ids),
            )
            raise StorageError(str(e), entity_type=self.entity_type.name, cause=e) from e

        logger.debug("Deleted entities", extra=self._log_extra(entity_ids=ids))

    def delete_revision(self, revision_id: Any) -> None:
        """Delete one non-default revision and its field revision rows.

        Raises:
            CannotDeleteDefaultRevisionError: If it is the default revision
            StorageError: On any other failure
        """
        revision = self.load_revision(revision_id)
        if revision is None:
            return
        if revision.is_default_revision():
            raise CannotDeleteDefaultRevisionError(self.entity_type.name, revision_id)

        try:
            with self.db.transaction():
                self.db.delete(self.revision_table, {self.keys.revision: revision.revision_id})
                if self.revision_data_table:
                    self.db.delete(self.revision_data_table, {self.keys.revision: revision.revision_id})
                self.hooks.invoke_field_method("delete_revision", revision)
                self._delete_field_items_revision(revision)
                self.hooks.invoke("revision_delete", revision)
        except Exception as e:
            logger.error(
                f"Failed to delete {self.entity_type.name} revision {revision_id}: {e}",
                exc_info=True,
                extra=self._log_extra(revision_id=revision_id),
            )
            raise StorageError(str(e), entity_type=self.entity_type.name, cause=e) from e

        logger.debug(
            "Deleted revision",
            extra=self._log_extra(entity_id=revision.id, revision_id=revision_id),
        )

    def reset_cache(self, ids: Optional[Iterable[Any]] = None) -> None:
        """Drop cached entities; all of them when ids is None."""
        self._cache.reset(ids)

    # ------------------------------------------------------------------
    # Field items
    # ------------------------------------------------------------------

    def _load_field_items(self, entities: dict[Any, Entity], load_current: bool) -> None:
        """Attach configurable field values to loaded entities."""
        if not entities:
            return
        fields: dict[str, FieldDef] = {}
        for bundle in {e.bundle for e in entities.values()}:
            for instance in self.registry.get_bundle_instances(self.entity_type.name, bundle):
                fields[instance.field_name] = instance.field

        if load_current:
            key, ids = "entity_id", list(entities)
        else:
            key, ids = "revision_id", [e.revision_id for e in entities.values()]

        for field_name, field_def in fields.items():
            table = field_table_name(field_def) if load_current else field_revision_table_name(field_def)
            codec = FieldValueCodec(field_def)
            rows = self.db.select(table, {key: ids, "deleted": 0}, order_by=["delta"])

            grouped: dict[tuple[Any, str], list[dict[str, Any]]] = {}
            for row in rows:
                entity = entities.get(row["entity_id"])
                if entity is None or not entity.has_field(field_name):
                    continue
                # Rows of non-translatable fields in other languages are stale.
                if row["langcode"] != entity.langcode and not field_def.translatable:
                    continue
                items = grouped.setdefault((row["entity_id"], row["langcode"]), [])
                if field_def.cardinality < 0 or len(items) < field_def.cardinality:
                    items.append(codec.decode(row))

            for (entity_id, langcode), items in grouped.items():
                entity = entities[entity_id]
                if not entity.has_translation(langcode):
                    entity.add_translation(langcode)
                entity.get_translation(langcode).get(field_name).set_value(items)

    def _save_field_items(self, entity: Entity, update: bool) -> None:
        """Write configurable field values (delete, then insert)."""
        if not self.entity_type.fieldable:
            return
        entity_id = entity.id
        revision_id = entity.revision_id
        if revision_id is None:
            revision_id = entity_id
        default_revision = entity.is_default_revision()
        translation_langcodes = entity.translation_languages()

        for instance in self.registry.get_bundle_instances(self.entity_type.name, entity.bundle):
            field_def = instance.field
            table = field_table_name(field_def)
            revision_table = field_revision_table_name(field_def)

            if update:
                if default_revision:
                    self.db.delete(table, {"entity_id": entity_id})
                self.db.delete(revision_table, {"entity_id": entity_id, "revision_id": revision_id})

            codec = FieldValueCodec(field_def)
            columns = ["entity_id", "revision_id", "bundle", "delta", "langcode", *codec.columns.values()]
            rows: list[list[Any]] = []
            langcodes = translation_langcodes if field_def.translatable else [entity.langcode]
            for langcode in langcodes:
                items = entity.get_translation(langcode).get(field_def.name)
                items.filter_empty_values()
                encoded = codec.encode_items(items, entity_id=entity_id, langcode=langcode)
                for delta, fragment in encoded:
                    rows.append([entity_id, revision_id, entity.bundle, delta, langcode, *fragment.values()])

            if rows:
                if default_revision:
                    self.db.insert_many(table, columns, rows)
                self.db.insert_many(revision_table, columns, rows)

    def _delete_field_items(self, entity: Entity) -> None:
        for instance in self.registry.get_bundle_instances(self.entity_type.name, entity.bundle):
            self.db.delete(field_table_name(instance.field), {"entity_id": entity.id})
            self.db.delete(field_revision_table_name(instance.field), {"entity_id": entity.id})

    def _delete_field_items_revision(self, entity: Entity) -> None:
        if entity.revision_id is None:
            return
        for instance in self.registry.get_bundle_instances(self.entity_type.name, entity.bundle):
            self.db.delete(
                field_revision_table_name(instance.field),
                {"entity_id": entity.id, "revision_id": entity.revision_id},
            )

    # ------------------------------------------------------------------
    # Field table lifecycle
    # ------------------------------------------------------------------

    def has_field_data(self, field_def: FieldDef) -> bool:
        """Whether any row (deleted ones included) exists for the field."""
        schema = self.db.schema()
        for table in (field_table_name(field_def), field_revision_table_name(field_def)):
            if schema.table_exists(table) and self.db.count(table):
                return True
        return False

    def on_field_create(self, field_def: FieldDef) -> None:
        """Create the current and revision tables of a new field."""
        schema = self.db.schema()
        with self.db.transaction():
            for name, spec in field_table_specs(field_def).items():
                schema.create_table(name, spec)
        logger.debug("Created field tables", extra=self._log_extra(field_name=field_def.name))

    def on_field_update(self, field_def: FieldDef, original: FieldDef) -> None:
        """Apply a field definition change to its tables.

        Without data the tables are recreated. With data only index
        changes are applied.

        Raises:
            SchemaChangeForbiddenError: If columns change while data exists
        """
        schema = self.db.schema()
        if not self.has_field_data(original):
            with self.db.transaction():
                for name in field_table_specs(original):
                    schema.drop_table(name)
                for name, spec in field_table_specs(field_def).items():
                    schema.create_table(name, spec)
            logger.debug("Recreated field tables", extra=self._log_extra(field_name=field_def.name))
            return

        if field_def.columns != original.columns or field_def.field_type != original.field_type:
            changes = [c for c in check_field_compatibility(original, field_def) if c.is_breaking]
            raise SchemaChangeForbiddenError(field_def.name, changes)

        old_indexes = original.schema.indexes
        new_indexes = field_def.schema.indexes
        real_indexes = field_indexes(field_def)
        with self.db.transaction():
            old_table = field_table_name(original)
            old_revision_table = field_revision_table_name(original)
            for name, columns in old_indexes.items():
                if name not in new_indexes or tuple(columns) != tuple(new_indexes[name]):
                    real_name = field_index_name(field_def.name, name)
                    schema.drop_index(old_table, real_name)
                    schema.drop_index(old_revision_table, real_name)
            table = field_table_name(field_def)
            revision_table = field_revision_table_name(field_def)
            for name, columns in new_indexes.items():
                if name not in old_indexes or tuple(columns) != tuple(old_indexes[name]):
                    real_name = field_index_name(field_def.name, name)
                    schema.add_index(table, real_name, real_indexes[real_name])
                    schema.add_index(revision_table, real_name, real_indexes[real_name])
        logger.debug("Updated field indexes", extra=self._log_extra(field_name=field_def.name))

    def on_field_delete(self, field_def: FieldDef) -> None:
        """Mark all values of a field deleted and move its tables aside."""
        table = field_table_name(field_def)
        revision_table = field_revision_table_name(field_def)
        deleted = field_def.with_changes(deleted=True)
        schema = self.db.schema()
        with self.db.transaction():
            self.db.update(table, {"deleted": 1})
            self.db.update(revision_table, {"deleted": 1})
            schema.rename_table(table, field_table_name(deleted))
            schema.rename_table(revision_table, field_revision_table_name(deleted))
        logger.debug(
            "Deleted field",
            extra=self._log_extra(field_name=field_def.name, table=field_table_name(deleted)),
        )

    def on_instance_delete(self, instance: FieldInstanceDef) -> None:
        """Mark the values of one bundle deleted."""
        with self.db.transaction():
            for table in (field_table_name(instance.field), field_revision_table_name(instance.field)):
                self.db.update(table, {"deleted": 1}, {"bundle": instance.bundle})
        logger.debug(
            "Deleted field instance",
            extra=self._log_extra(field_name=instance.field_name, bundle=instance.bundle),
        )

    def on_bundle_rename(self, bundle: str, new_bundle: str) -> None:
        """Move field values to a renamed bundle.

        Must run before the registry renames the bundle, so the instances
        (deleted ones included) are still found under the old name.
        """
        instances = self.registry.get_bundle_instances(self.entity_type.name, bundle, include_deleted=True)
        with self.db.transaction():
            for instance in instances:
                for table in (field_table_name(instance.field), field_revision_table_name(instance.field)):
                    self.db.update(table, {"bundle": new_bundle}, {"bundle": bundle})
        logger.debug(
            "Renamed bundle",
            extra=self._log_extra(bundle=bundle, new_bundle=new_bundle, instances=len(instances)),
        )

    def deleted_field_entity_ids(self, field_def: FieldDef, bundle: str, limit: Optional[int] = None) -> list[Any]:
        """Ids of entities with deleted values of a field on one bundle.

        Both tables are searched: an entity whose default revision is empty
        can still have deleted values in older revisions.
        """
        sql = (
            f"SELECT entity_id FROM {quote(field_table_name(field_def))}"
            f" WHERE deleted = 1 AND bundle = ?"
            f" UNION SELECT entity_id FROM {quote(field_revision_table_name(field_def))}"
            f" WHERE deleted = 1 AND bundle = ?"
            f" ORDER BY entity_id"
        )
        params: list[Any] = [bundle, bundle]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [row["entity_id"] for row in self.db.query(sql, params)]

    def stub_entity(self, entity_id: Any, bundle: str) -> Entity:
        """Minimal entity carrying only its id and bundle, for purging."""
        values = {self.keys.id: {LANGCODE_DEFAULT: entity_id}}
        if self.keys.bundle:
            values[self.keys.bundle] = {LANGCODE_DEFAULT: bundle}
        return Entity(self.entity_type, self.entity_type.field_definitions(), values, bundle=bundle)

    def read_field_items_to_purge(self, entity: Entity, instance: FieldInstanceDef) -> list[dict[str, Any]]:
        """Stored items of a deleted instance for one entity, by property."""
        field_def = instance.field
        codec = FieldValueCodec(field_def)
        rows = self.db.select(
            field_table_name(field_def),
            {"entity_id": entity.id, "deleted": 1},
            order_by=["langcode", "delta"],
        )
        return [codec.decode(row) for row in rows]

    def purge_field_items(self, entity: Entity, instance: FieldInstanceDef) -> None:
        """Physically remove the values of a deleted instance for one entity."""
        field_def = instance.field
        items = self.read_field_items_to_purge(entity, instance)
        with self.db.transaction():
            self.hooks.invoke_field_items("delete", field_def, items, entity)
            self.db.delete(field_table_name(field_def), {"entity_id": entity.id, "deleted": 1})
            self.db.delete(field_revision_table_name(field_def), {"entity_id": entity.id, "deleted": 1})
        logger.debug(
            "Purged field items",
            extra=self._log_extra(field_name=field_def.name, entity_id=entity.id),
        )

    def on_field_purge(self, field_def: FieldDef) -> None:
        """Drop the tables of a deleted field."""
        schema = self.db.schema()
        with self.db.transaction():
            schema.drop_table(field_table_name(field_def))
            schema.drop_table(field_revision_table_name(field_def))
        logger.debug("Purged field", extra=self._log_extra(field_name=field_def.name))
