"""
Entity mapper.

Converts between Entity objects and the rows of the entity tables:
- to_storage_record(): entity -> base or revision table record
- to_data_record(): one translation -> data or revision data table record
- from_storage_records(): joined base/revision rows (+ data rows) -> entities

Column naming follows field_schema: a single-column base field is stored
under its own name, a multi-column one under <field>__<property>.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

from ..entity import Entity, EntityTranslation
from ..schema.types import LANGCODE_DEFAULT, LANGCODE_NOT_SPECIFIED, EntityTypeDef, FieldDef
from .field_schema import PROPERTY_SEPARATOR, entity_table_specs

# Column added by the load query: whether the loaded revision is the default.
IS_DEFAULT_REVISION = "is_default_revision"


@dataclass
class StorageRecord:
    """A row for one entity table.

    Attributes:
        table: Table name
        values: Column -> value
    """

    table: str
    values: dict[str, Any] = field(default_factory=dict)

    table_key: ClassVar[str] = ""

    def __getitem__(self, column: str) -> Any:
        return self.values[column]

    def __setitem__(self, column: str, value: Any) -> None:
        self.values[column] = value

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)


@dataclass
class BaseRecord(StorageRecord):
    table_key: ClassVar[str] = "base_table"


@dataclass
class RevisionRecord(StorageRecord):
    table_key: ClassVar[str] = "revision_table"


@dataclass
class DataRecord(StorageRecord):
    table_key: ClassVar[str] = "data_table"


@dataclass
class RevisionDataRecord(DataRecord):
    table_key: ClassVar[str] = "revision_data_table"


RECORD_TYPES: dict[str, type[StorageRecord]] = {
    cls.table_key: cls for cls in (BaseRecord, RevisionRecord, DataRecord, RevisionDataRecord)
}

Source = Union[Entity, EntityTranslation]


def split_column(name: str) -> tuple[str, Optional[str]]:
    """Split a column on the first "__" into (field, property)."""
    if PROPERTY_SEPARATOR in name:
        field_name, prop = name.split(PROPERTY_SEPARATOR, 1)
        if field_name:
            return field_name, prop
    return name, None


class EntityMapper:
    """Maps entities of one type to and from entity-table rows.

    Args:
        entity_type: The entity type definition
        definitions_for: Returns the field definitions of a bundle
    """

    def __init__(
        self,
        entity_type: EntityTypeDef,
        definitions_for: Callable[[str], Mapping[str, FieldDef]],
    ) -> None:
        self.entity_type = entity_type
        self.definitions_for = definitions_for
        self.tables = entity_table_specs(entity_type)

    def table_name(self, table_key: str) -> str:
        return self.tables[table_key][0]

    def table_columns(self, table_key: str) -> list[str]:
        return list(self.tables[table_key][1].columns)

    # ------------------------------------------------------------------
    # Entity -> records
    # ------------------------------------------------------------------

    def _read(self, source: Source, entity: Entity, column: str) -> Any:
        field_name, prop = split_column(column)
        if not entity.has_field(field_name):
            return None
        items = source.get(field_name)
        if prop is None:
            return items.value
        first = items.first()
        return first[prop] if first is not None else None

    def to_storage_record(self, source: Source, table_key: str = "base_table") -> StorageRecord:
        """Map an entity (or translation) to a record of one table.

        Unset values are omitted for new entities so storage defaults
        apply; existing entities always write every column.
        """
        entity = source.entity if isinstance(source, EntityTranslation) else source
        is_new = entity.is_new()
        record = RECORD_TYPES[table_key](table=self.table_name(table_key))
        for column in self.table_columns(table_key):
            value = self._read(source, entity, column)
            if value is not None or not is_new:
                record[column] = value
        return record

    def to_data_record(self, translation: EntityTranslation, table_key: str = "data_table") -> StorageRecord:
        """Map one translation to a data or revision data table record."""
        record = self.to_storage_record(translation, table_key)
        record[self.entity_type.keys.langcode] = translation.langcode
        record["default_langcode"] = int(translation.langcode == translation.entity.langcode)
        return record

    # ------------------------------------------------------------------
    # Records -> entities
    # ------------------------------------------------------------------

    def from_storage_records(
        self,
        records: Iterable[Mapping[str, Any]],
        data_records: Iterable[Mapping[str, Any]] = (),
    ) -> dict[Any, Entity]:
        """Build entities from joined base/revision rows and data rows.

        Args:
            records: One row per entity (base columns + revision columns,
                optionally with an is_default_revision column)
            data_records: Data (or revision data) table rows of the same
                entities, in any language

        Returns:
            Entity id -> Entity, in record order
        """
        id_key = self.entity_type.keys.id
        values: dict[Any, dict[str, dict[str, Any]]] = {}
        default_flags: dict[Any, bool] = {}

        for record in records:
            entity_id = record[id_key]
            entity_values: dict[str, dict[str, Any]] = {}
            for column, value in record.items():
                if column == IS_DEFAULT_REVISION:
                    default_flags[entity_id] = bool(value)
                    continue
                field_name, prop = split_column(column)
                if prop is None:
                    entity_values[field_name] = {LANGCODE_DEFAULT: value}
                else:
                    slot = entity_values.setdefault(field_name, {}).setdefault(LANGCODE_DEFAULT, {})
                    slot[prop] = value
            values[entity_id] = entity_values

        translations: dict[Any, list[str]] = {entity_id: [] for entity_id in values}
        if self.entity_type.data_table:
            self._attach_data_records(values, translations, data_records)

        entities: dict[Any, Entity] = {}
        bundle_key = self.entity_type.keys.bundle
        for entity_id, entity_values in values.items():
            for per_slot in entity_values.values():
                for slot, value in per_slot.items():
                    # A multi-column base field with no stored properties has no item.
                    if isinstance(value, dict) and all(v is None for v in value.values()):
                        per_slot[slot] = None
            bundle = self.entity_type.name
            if bundle_key:
                bundle = entity_values.get(bundle_key, {}).get(LANGCODE_DEFAULT) or bundle
            entity = Entity(
                self.entity_type,
                self.definitions_for(bundle),
                entity_values,
                bundle=bundle,
                translations=translations[entity_id],
            )
            if entity_id in default_flags:
                entity.set_default_revision(default_flags[entity_id])
            entities[entity_id] = entity
        return entities

    def _attach_data_records(
        self,
        values: dict[Any, dict[str, dict[str, Any]]],
        translations: dict[Any, list[str]],
        data_records: Iterable[Mapping[str, Any]],
    ) -> None:
        """Merge per-language rows into the values of each entity."""
        keys = self.entity_type.keys
        langcode_key = keys.langcode
        skip = {keys.id, keys.revision}
        for row in data_records:
            entity_id = row[keys.id]
            if entity_id not in values:
                continue
            row_langcode = row.get(langcode_key) or LANGCODE_NOT_SPECIFIED
            slot = LANGCODE_DEFAULT if row.get("default_langcode") else row_langcode
            if slot != LANGCODE_DEFAULT:
                translations[entity_id].append(row_langcode)
            entity_values = values[entity_id]
            for column, value in row.items():
                if column in skip:
                    continue
                field_name, prop = split_column(column)
                if prop is None:
                    entity_values.setdefault(field_name, {})[slot] = value
                else:
                    entity_values.setdefault(field_name, {}).setdefault(slot, {})[prop] = value
