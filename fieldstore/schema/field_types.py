"""
Static field-type table.

Each field type maps an identifier to its column schema and default
settings. The table is populated at import time with the built-in types;
applications may add their own with register_field_type() during startup,
before any field of that type is defined.

Example:
    >>> from fieldstore.schema.field_types import get_field_type
    >>> get_field_type("text_long").columns.keys()
    dict_keys(['value', 'format'])
"""

from __future__ import annotations

import difflib
import logging
import threading
from typing import Dict, List

from ..errors import UnknownFieldTypeError
from .types import FieldTypeDef, ForeignKeySpec, column

logger = logging.getLogger(__name__)

_field_types: Dict[str, FieldTypeDef] = {}
_field_types_lock = threading.Lock()


def register_field_type(type_def: FieldTypeDef, replace: bool = False) -> None:
    """Add a field type to the table.

    Args:
        type_def: The field type definition
        replace: Allow replacing an existing definition with the same id

    Raises:
        ValueError: If the id is taken and replace is False
    """
    with _field_types_lock:
        if type_def.type_id in _field_types and not replace:
            raise ValueError(f"Field type '{type_def.type_id}' is already registered")
        _field_types[type_def.type_id] = type_def
    logger.debug(f"Registered field type: {type_def.type_id}")


def get_field_type(type_id: str) -> FieldTypeDef:
    """Look up a field type.

    Raises:
        UnknownFieldTypeError: If no type with that id exists
    """
    try:
        return _field_types[type_id]
    except KeyError:
        suggestions = difflib.get_close_matches(type_id, list(_field_types), n=3)
        raise UnknownFieldTypeError(type_id, suggestions) from None


def has_field_type(type_id: str) -> bool:
    return type_id in _field_types


def field_types() -> List[FieldTypeDef]:
    """All registered field types, sorted by id."""
    return [_field_types[k] for k in sorted(_field_types)]


def _format_column():
    return column("varchar", length=255)


_BUILTIN_TYPES = (
    FieldTypeDef(
        type_id="string",
        label="String",
        columns={"value": column("varchar", length=255, length_setting="max_length")},
        default_settings={"max_length": 255},
    ),
    FieldTypeDef(
        type_id="text",
        label="Text",
        columns={
            "value": column("varchar", length=255, length_setting="max_length"),
            "format": _format_column(),
        },
        indexes={"format": ("format",)},
        default_settings={"max_length": 255},
    ),
    FieldTypeDef(
        type_id="text_long",
        label="Long text",
        columns={
            "value": column("text", size="big"),
            "format": _format_column(),
        },
        indexes={"format": ("format",)},
    ),
    FieldTypeDef(
        type_id="text_with_summary",
        label="Long text and summary",
        columns={
            "value": column("text", size="big"),
            "summary": column("text", size="big"),
            "format": _format_column(),
        },
        indexes={"format": ("format",)},
    ),
    FieldTypeDef(
        type_id="integer",
        label="Integer",
        columns={"value": column("int")},
    ),
    FieldTypeDef(
        type_id="float",
        label="Float",
        columns={"value": column("float")},
    ),
    FieldTypeDef(
        type_id="boolean",
        label="Boolean",
        columns={"value": column("int", size="tiny")},
    ),
    FieldTypeDef(
        type_id="email",
        label="E-mail",
        columns={"value": column("varchar", length=255)},
    ),
    FieldTypeDef(
        type_id="uuid",
        label="UUID",
        columns={"value": column("varchar", length=128)},
        indexes={"value": ("value",)},
    ),
    FieldTypeDef(
        type_id="language",
        label="Language",
        columns={"value": column("varchar", length=12)},
    ),
    FieldTypeDef(
        type_id="timestamp",
        label="Timestamp",
        columns={"value": column("int")},
    ),
    FieldTypeDef(
        type_id="entity_reference",
        label="Entity reference",
        columns={"target_id": column("int", unsigned=True)},
        indexes={"target_id": ("target_id",)},
        default_settings={"target_type": ""},
        main_property="target_id",
    ),
    FieldTypeDef(
        type_id="taxonomy_term_reference",
        label="Term reference",
        columns={"target_id": column("int", unsigned=True)},
        indexes={"target_id": ("target_id",)},
        foreign_keys={
            "target_id": ForeignKeySpec(table="taxonomy_term_data", columns={"target_id": "tid"}),
        },
        default_settings={"vocabulary": ""},
        main_property="target_id",
    ),
    FieldTypeDef(
        type_id="map",
        label="Map",
        columns={"value": column("blob", size="big", serialize=True)},
    ),
)

for _type_def in _BUILTIN_TYPES:
    register_field_type(_type_def)
