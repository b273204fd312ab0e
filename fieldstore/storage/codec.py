"""
Field value codec.

Converts between in-memory field items (property -> value) and the column
fragments stored in a field table (table column -> value).

Columns flagged ``serialize`` are stored as JSON text. Values JSON cannot
represent as-is are wrapped in a single-key tag object:

    tuple       {"__tuple__": [...]}
    set         {"__set__": [...]}
    frozenset   {"__frozenset__": [...]}
    bytes       {"__bytes__": "<base64>"}
    other dict  {"__map__": [[key, value], ...]}

A dict is stored plainly only when all of its keys are strings and none
of them is a tag. Decoding returns a value equal to the one encoded, with
the same container and key types. Anything else (objects, non-scalar
keys other than tuples and frozensets) raises TypeError.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..schema.types import CARDINALITY_UNLIMITED, ColumnSpec, FieldDef
from .field_schema import field_columns

logger = logging.getLogger(__name__)

_TAGS = ("__tuple__", "__set__", "__frozenset__", "__bytes__", "__map__")

_SCALARS = (str, int, float, bool, type(None))


def _pack(value: Any) -> Any:
    """Turn a value into plain JSON data, tagging what JSON would lose."""
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, list):
        return [_pack(v) for v in value]
    if isinstance(value, tuple):
        return {"__tuple__": [_pack(v) for v in value]}
    if isinstance(value, frozenset):
        return {"__frozenset__": [_pack(v) for v in value]}
    if isinstance(value, set):
        return {"__set__": [_pack(v) for v in value]}
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, Mapping):
        if all(isinstance(k, str) and k not in _TAGS for k in value):
            return {k: _pack(v) for k, v in value.items()}
        return {"__map__": [[_pack(k), _pack(v)] for k, v in value.items()]}
    raise TypeError(
        f"Cannot serialize value of type {type(value).__name__}; serialized columns accept "
        f"scalars, bytes, lists, tuples, sets and mappings of those"
    )


def _unpack(obj: dict[str, Any]) -> Any:
    """json object_hook reversing _pack; inner objects are already unpacked."""
    if len(obj) == 1:
        tag, payload = next(iter(obj.items()))
        if tag == "__tuple__":
            return tuple(payload)
        if tag == "__set__":
            return set(payload)
        if tag == "__frozenset__":
            return frozenset(payload)
        if tag == "__bytes__":
            return base64.b64decode(payload)
        if tag == "__map__":
            return {k: v for k, v in payload}
    return obj


def encode_value(spec: ColumnSpec, value: Any) -> Any:
    """Encode one property value for storage.

    Raises:
        TypeError: If a serialized column is given a value it cannot store
    """
    if spec.serialize and value is not None:
        return json.dumps(_pack(value), separators=(",", ":"))
    return value


def decode_value(spec: ColumnSpec, raw: Any) -> Any:
    """Decode one stored column value."""
    if spec.serialize and raw is not None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw, object_hook=_unpack)
    return raw


class FieldValueCodec:
    """Encoder/decoder for the items of one configurable field.

    Attributes:
        field: The field definition
        columns: Property name -> table column
    """

    def __init__(self, field_def: FieldDef) -> None:
        self.field = field_def
        self.specs = field_def.columns
        self.columns = field_columns(field_def)

    def encode(self, item: Mapping[str, Any]) -> dict[str, Any]:
        """Field item -> row fragment.

        Properties the item does not set are stored as NULL.
        """
        return {
            self.columns[prop]: encode_value(self.specs[prop], item.get(prop))
            for prop in self.field.property_names
        }

    def decode(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Row fragment -> field item."""
        return {
            prop: decode_value(self.specs[prop], row.get(self.columns[prop]))
            for prop in self.field.property_names
        }

    def limit(self, items: Iterable[Mapping[str, Any]], **context: Any) -> list[Mapping[str, Any]]:
        """Apply the field's cardinality to a list of items.

        Items beyond the limit are dropped and a warning is logged.
        """
        items = list(items)
        cardinality = self.field.cardinality
        if cardinality == CARDINALITY_UNLIMITED or len(items) <= cardinality:
            return items
        logger.warning(
            f"Field '{self.field.name}' holds {len(items)} items but accepts {cardinality}; "
            f"dropping {len(items) - cardinality}",
            extra={
                "entity_type": self.field.entity_type,
                "field_name": self.field.name,
                "cardinality": cardinality,
                "item_count": len(items),
                **context,
            },
        )
        return items[:cardinality]

    def encode_items(self, items: Iterable[Mapping[str, Any]], **context: Any) -> list[tuple[int, dict[str, Any]]]:
        """Encode an ordered list of items.

        Returns:
            (delta, row fragment) pairs with contiguous deltas from 0
        """
        return [(delta, self.encode(item)) for delta, item in enumerate(self.limit(items, **context))]
