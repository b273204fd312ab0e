"""
Hook dispatch for entity lifecycle events.

Entity hooks receive the entity (or, for load, the dict of loaded
entities). Field methods run per field type and receive the item list of
every field of that type, in every language, together with the entity.

Exceptions raised by callbacks are not caught here: inside save() or
delete() they abort and roll back the enclosing transaction.

Example:
    >>> hooks = HookDispatcher()
    >>> @hooks.on("presave", entity_type="article")
    ... def stamp(entity):
    ...     entity.set("changed", int(time.time()))
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

from ..entity import Entity, FieldItemList
from ..schema.types import FieldDef

logger = logging.getLogger(__name__)

HOOKS = (
    "load",
    "create",
    "presave",
    "insert",
    "update",
    "predelete",
    "delete",
    "revision_delete",
    "translation_insert",
    "translation_delete",
)

FIELD_METHODS = ("pre_save", "insert", "update", "delete", "delete_revision")

HookCallback = Callable[..., Any]
FieldMethodCallback = Callable[[FieldItemList, Entity], Any]


class HookDispatcher:
    """Registry and dispatcher of lifecycle callbacks."""

    def __init__(self) -> None:
        # (hook, entity type or None) -> callbacks in registration order
        self._hooks: dict[tuple[str, Optional[str]], list[HookCallback]] = {}
        self._field_methods: dict[tuple[str, str], list[FieldMethodCallback]] = {}

    def register(self, hook: str, callback: HookCallback, entity_type: Optional[str] = None) -> None:
        """Register an entity hook.

        Raises:
            ValueError: If the hook name is unknown
        """
        if hook not in HOOKS:
            raise ValueError(f"Unknown hook '{hook}'. Valid hooks: {list(HOOKS)}")
        self._hooks.setdefault((hook, entity_type), []).append(callback)

    def on(self, hook: str, entity_type: Optional[str] = None) -> Callable[[HookCallback], HookCallback]:
        """Decorator form of register()."""
        def decorator(callback: HookCallback) -> HookCallback:
            self.register(hook, callback, entity_type)
            return callback
        return decorator

    def unregister(self, hook: str, callback: HookCallback, entity_type: Optional[str] = None) -> None:
        callbacks = self._hooks.get((hook, entity_type), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def invoke(self, hook: str, entity: Entity, *args: Any) -> None:
        """Run the type-specific callbacks, then the generic ones."""
        self._dispatch(hook, entity.entity_type.name, entity, *args)

    def invoke_load(self, entity_type: str, entities: dict[Any, Entity]) -> None:
        """Run the load hook once for a batch of loaded entities."""
        if entities:
            self._dispatch("load", entity_type, entities)

    def _dispatch(self, hook: str, entity_type: str, *args: Any) -> None:
        for key in ((hook, entity_type), (hook, None)):
            for callback in list(self._hooks.get(key, ())):
                callback(*args)

    def register_field_method(self, field_type: str, method: str, callback: FieldMethodCallback) -> None:
        """Register a callback run for every field of a type.

        Raises:
            ValueError: If the method name is unknown
        """
        if method not in FIELD_METHODS:
            raise ValueError(f"Unknown field method '{method}'. Valid methods: {list(FIELD_METHODS)}")
        self._field_methods.setdefault((field_type, method), []).append(callback)

    def invoke_field_method(self, method: str, entity: Entity) -> None:
        """Call a field method on every field item list of the entity.

        Non-translatable fields are visited once, through the original
        language.
        """
        if not self._field_methods:
            return
        for langcode in entity.translation_languages():
            translation = entity.get_translation(langcode)
            for name, definition in entity.definitions.items():
                callbacks = self._field_methods.get((definition.field_type, method))
                if not callbacks:
                    continue
                if not definition.translatable and not translation.is_default_translation():
                    continue
                items = translation.get(name)
                for callback in callbacks:
                    callback(items, entity)

    def invoke_field_items(
        self,
        method: str,
        definition: FieldDef,
        items: list[dict[str, Any]],
        entity: Entity,
    ) -> None:
        """Call a field method on raw stored items, e.g. values being purged."""
        callbacks = self._field_methods.get((definition.field_type, method))
        if not callbacks:
            return
        item_list = FieldItemList(definition)
        item_list.set_value(items)
        for callback in callbacks:
            callback(item_list, entity)

    def has_hooks(self, hook: str, entity_type: Optional[str] = None) -> bool:
        return bool(self._hooks.get((hook, entity_type)) or self._hooks.get((hook, None)))
