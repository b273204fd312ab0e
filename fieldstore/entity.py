"""
In-memory entities.

An Entity holds, per language, one FieldItemList per field. Which fields
exist is decided by the field definitions of the entity's bundle (base
fields plus attached configurable fields), never by the values given.

Language slots:
    Values in the entity's original language live in the LANGCODE_DEFAULT
    slot. Translations live in a slot named after their langcode.
    Non-translatable fields always resolve to the LANGCODE_DEFAULT slot,
    whatever language they are accessed through.

Example:
    >>> entity = storage.create({"title": "Hello", "body": "Hi"})
    >>> entity.get("title").value
    'Hello'
    >>> entity.get("body")[0]["value"]
    'Hi'
    >>> entity.set("tags", [{"target_id": 1}, {"target_id": 2}])
"""

from __future__ import annotations

import difflib
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Optional

from .errors import UnknownFieldError
from .schema.types import (
    LANGCODE_DEFAULT,
    LANGCODE_NOT_SPECIFIED,
    EntityTypeDef,
    FieldDef,
)


class FieldItem:
    """One value slot (delta) of a field: property name -> value."""

    def __init__(self, definition: FieldDef, values: Optional[Mapping[str, Any]] = None) -> None:
        self.definition = definition
        self._values: dict[str, Any] = dict(values or {})

    def __getitem__(self, name: str) -> Any:
        return self._values.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self._values[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    @property
    def value(self) -> Any:
        """Value of the field type's main property."""
        return self._values.get(self.definition.main_property)

    def is_empty(self) -> bool:
        value = self.value
        return value is None or value == ""

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FieldItem):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"FieldItem({self._values!r})"


class FieldItemList:
    """Ordered items of one field in one language.

    Attributes:
        definition: The field definition
        langcode: The language slot the list belongs to
    """

    def __init__(self, definition: FieldDef, langcode: str = LANGCODE_DEFAULT) -> None:
        self.definition = definition
        self.langcode = langcode
        self._items: list[FieldItem] = []

    @property
    def name(self) -> str:
        return self.definition.name

    def _to_item(self, value: Any) -> FieldItem:
        if isinstance(value, FieldItem):
            return FieldItem(self.definition, value.to_dict())
        if isinstance(value, Mapping):
            return FieldItem(self.definition, value)
        return FieldItem(self.definition, {self.definition.main_property: value})

    def set_value(self, value: Any) -> None:
        """Replace all items.

        Accepts None (no items), a scalar (stored as the main property),
        a mapping (one item) or a list of scalars/mappings.
        """
        if value is None:
            self._items = []
        elif isinstance(value, FieldItemList):
            self._items = [self._to_item(item) for item in value]
        elif isinstance(value, (list, tuple)):
            self._items = [self._to_item(v) for v in value]
        else:
            self._items = [self._to_item(value)]

    def get_value(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._items]

    @property
    def value(self) -> Any:
        """Main property of the first item, or None."""
        return self._items[0].value if self._items else None

    def first(self) -> Optional[FieldItem]:
        return self._items[0] if self._items else None

    def append(self, value: Any) -> FieldItem:
        item = self._to_item(value)
        self._items.append(item)
        return item

    def filter_empty_values(self) -> FieldItemList:
        """Drop empty items, keeping order."""
        self._items = [item for item in self._items if not item.is_empty()]
        return self

    def apply_default_value(self, default: Any = None) -> None:
        """Set the default value if one is defined."""
        if default is None:
            default = self.definition.default_value
        if default is not None:
            self.set_value(default)

    def is_empty(self) -> bool:
        return all(item.is_empty() for item in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[FieldItem]:
        return iter(self._items)

    def __getitem__(self, delta: int) -> FieldItem:
        return self._items[delta]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FieldItemList):
            return self.get_value() == other.get_value()
        if isinstance(other, list):
            return self.get_value() == [
                self._to_item(v).to_dict() for v in other
            ]
        return NotImplemented

    def __repr__(self) -> str:
        return f"FieldItemList({self.name!r}, {self.get_value()!r})"


class EntityTranslation:
    """View of an entity in one language."""

    def __init__(self, entity: Entity, langcode: str) -> None:
        self.entity = entity
        self.langcode = langcode

    def get(self, name: str) -> FieldItemList:
        return self.entity.get(name, self.langcode)

    def set(self, name: str, value: Any) -> None:
        self.entity.set(name, value, self.langcode)

    def is_default_translation(self) -> bool:
        return self.langcode == self.entity.langcode

    def __repr__(self) -> str:
        return f"EntityTranslation({self.entity!r}, {self.langcode!r})"


class Entity:
    """An instance of an entity type.

    Attributes:
        entity_type: The entity type definition
        bundle: The bundle (the entity type name for types without bundles)
        original: The stored version, attached during save
    """

    def __init__(
        self,
        entity_type: EntityTypeDef,
        definitions: Mapping[str, FieldDef],
        values: Optional[Mapping[str, Mapping[str, Any]]] = None,
        bundle: Optional[str] = None,
        translations: Iterable[str] = (),
    ) -> None:
        """Build an entity from per-language values.

        Args:
            entity_type: The entity type definition
            definitions: Field definitions of the bundle
            values: Field name -> language slot -> value
            bundle: The bundle
            translations: Langcodes of the translations (the original
                language may be included and is ignored)
        """
        self.entity_type = entity_type
        self.bundle = bundle or entity_type.name
        self._definitions = dict(definitions)
        self._fields: dict[str, dict[str, FieldItemList]] = {LANGCODE_DEFAULT: {}}
        self._enforce_is_new = False
        self._new_revision = False
        self._default_revision = True
        self.original: Optional[Entity] = None

        for name, per_language in (values or {}).items():
            if name not in self._definitions:
                continue
            for slot, value in per_language.items():
                self._fields.setdefault(slot, {})
                self._list(name, slot).set_value(value)

        for langcode in translations:
            if langcode not in (LANGCODE_DEFAULT, self.langcode):
                self._fields.setdefault(langcode, {})
                self._init_translation_langcode(langcode)

    def __repr__(self) -> str:
        return f"Entity({self.entity_type.name!r}, id={self.id!r}, bundle={self.bundle!r})"

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _key_value(self, key: str) -> Any:
        if not key:
            return None
        return self.get(key).value

    @property
    def entity_type_id(self) -> str:
        return self.entity_type.name

    @property
    def id(self) -> Any:
        return self._key_value(self.entity_type.keys.id)

    @property
    def uuid(self) -> Optional[str]:
        return self._key_value(self.entity_type.keys.uuid)

    @property
    def revision_id(self) -> Any:
        return self._key_value(self.entity_type.keys.revision)

    @property
    def langcode(self) -> str:
        """The original language of the entity."""
        key = self.entity_type.keys.langcode
        if not key:
            return LANGCODE_NOT_SPECIFIED
        return self._list(key, LANGCODE_DEFAULT).value or LANGCODE_NOT_SPECIFIED

    # ------------------------------------------------------------------
    # Field access
    # ------------------------------------------------------------------

    @property
    def definitions(self) -> dict[str, FieldDef]:
        return dict(self._definitions)

    def field_names(self) -> list[str]:
        return list(self._definitions)

    def has_field(self, name: str) -> bool:
        return name in self._definitions

    def get_definition(self, name: str) -> FieldDef:
        try:
            return self._definitions[name]
        except KeyError:
            suggestions = difflib.get_close_matches(name, list(self._definitions), n=3)
            raise UnknownFieldError(name, self.entity_type.name, suggestions) from None

    def _slot(self, name: str, langcode: Optional[str]) -> str:
        if langcode is None or langcode == LANGCODE_DEFAULT or langcode == self.langcode:
            return LANGCODE_DEFAULT
        if not self.get_definition(name).translatable:
            return LANGCODE_DEFAULT
        if langcode not in self._fields:
            raise KeyError(f"Invalid translation language ({langcode}) specified")
        return langcode

    def _list(self, name: str, slot: str) -> FieldItemList:
        per_slot = self._fields[slot]
        if name not in per_slot:
            per_slot[name] = FieldItemList(self.get_definition(name), slot)
        return per_slot[name]

    def get(self, name: str, langcode: Optional[str] = None) -> FieldItemList:
        """Get the items of a field.

        Raises:
            UnknownFieldError: If the bundle has no such field
        """
        self.get_definition(name)
        return self._list(name, self._slot(name, langcode))

    def set(self, name: str, value: Any, langcode: Optional[str] = None) -> None:
        """Set the items of a field (see FieldItemList.set_value).

        Raises:
            UnknownFieldError: If the bundle has no such field
        """
        self.get(name, langcode).set_value(value)

    def values(self, langcode: Optional[str] = None) -> dict[str, list[dict[str, Any]]]:
        """All field values in one language."""
        return {name: self.get(name, langcode).get_value() for name in self._definitions}

    # ------------------------------------------------------------------
    # Lifecycle flags
    # ------------------------------------------------------------------

    def is_new(self) -> bool:
        return self._enforce_is_new or self.id is None

    def enforce_is_new(self, value: bool = True) -> None:
        self._enforce_is_new = value

    def is_new_revision(self) -> bool:
        return self._new_revision

    def set_new_revision(self, value: bool = True) -> None:
        if value and not self.entity_type.revisionable:
            raise ValueError(f"Entity type '{self.entity_type.name}' does not support revisions")
        self._new_revision = value

    def is_default_revision(self) -> bool:
        return self._default_revision

    def set_default_revision(self, value: bool = True) -> bool:
        """Set the default-revision flag.

        Returns:
            The previous value
        """
        previous = self._default_revision
        self._default_revision = bool(value)
        return previous

    # ------------------------------------------------------------------
    # Translations
    # ------------------------------------------------------------------

    def _init_translation_langcode(self, langcode: str) -> None:
        key = self.entity_type.keys.langcode
        if key and self._definitions[key].translatable:
            self._list(key, langcode).set_value(langcode)

    def translation_languages(self, include_default: bool = True) -> list[str]:
        """Langcodes of the entity, original language first."""
        others = [slot for slot in self._fields if slot != LANGCODE_DEFAULT]
        return ([self.langcode] if include_default else []) + others

    def has_translation(self, langcode: str) -> bool:
        return langcode == self.langcode or (langcode != LANGCODE_DEFAULT and langcode in self._fields)

    def add_translation(self, langcode: str, values: Optional[Mapping[str, Any]] = None) -> EntityTranslation:
        """Add a translation, optionally with initial translatable values.

        Raises:
            ValueError: If the langcode is the original language or exists
        """
        if langcode in (LANGCODE_DEFAULT, self.langcode):
            raise ValueError(f"Language {langcode} is the original language of the entity")
        if langcode in self._fields:
            raise ValueError(f"Translation {langcode} already exists")
        self._fields[langcode] = {}
        self._init_translation_langcode(langcode)
        translation = EntityTranslation(self, langcode)
        for name, value in (values or {}).items():
            translation.set(name, value)
        return translation

    def get_translation(self, langcode: str) -> EntityTranslation:
        """Get the entity in one language.

        Raises:
            KeyError: If the entity has no such translation
        """
        if langcode == LANGCODE_DEFAULT:
            langcode = self.langcode
        if not self.has_translation(langcode):
            raise KeyError(f"Invalid translation language ({langcode}) specified")
        return EntityTranslation(self, langcode)

    def get_untranslated(self) -> EntityTranslation:
        return EntityTranslation(self, self.langcode)

    def remove_translation(self, langcode: str) -> None:
        if langcode in (LANGCODE_DEFAULT, self.langcode):
            raise ValueError("The original language cannot be removed")
        self._fields.pop(langcode, None)
