"""
Entity static cache.

One cache belongs to one storage controller and lives as long as it does.
It is process-local and never shared; writes invalidate it inside the
same transaction boundary that made the cached data stale.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Optional

from ..entity import Entity


class EntityCache:
    """Loaded entities of one entity type, keyed by id.

    Attributes:
        enabled: When False every operation is a no-op and get() misses
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._entities: dict[Any, Entity] = {}

    def get(self, ids: Iterable[Any]) -> dict[Any, Entity]:
        """Cached entities among ids (misses are left out)."""
        if not self.enabled:
            return {}
        return {i: self._entities[i] for i in ids if i in self._entities}

    def set(self, entities: dict[Any, Entity]) -> None:
        if self.enabled:
            self._entities.update(entities)

    def reset(self, ids: Optional[Iterable[Any]] = None) -> None:
        """Drop cached entities; all of them when ids is None."""
        if ids is None:
            self._entities.clear()
            return
        for i in ids:
            self._entities.pop(i, None)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __len__(self) -> int:
        return len(self._entities)
