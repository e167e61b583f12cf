"""
Effect Catalog: the currently loaded set of effect definitions.

Readers never lock. Writers build a complete new mapping and swap the
reference, so a lookup observes either the old or the new set in full.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import structlog

from stagebeat.core.models import Effect

logger = structlog.get_logger()


class EffectCatalog:
    """Lookup of effect definitions by id or tag."""

    def __init__(self, effects: Iterable[Effect] = ()):
        self._write_lock = threading.Lock()
        self._effects: Mapping[str, Effect] = self._index(effects)

    @staticmethod
    def _index(effects: Iterable[Effect]) -> Mapping[str, Effect]:
        indexed: dict[str, Effect] = {}
        for effect in effects:
            if effect.id in indexed:
                logger.warning("Duplicate effect id, keeping last", effect_id=effect.id)
            indexed[effect.id] = effect
        return MappingProxyType(indexed)

    def get_effect(self, effect_id: str) -> Optional[Effect]:
        return self._effects.get(effect_id)

    def find_by_tag(self, tag: str) -> list[Effect]:
        return [effect for effect in self._effects.values() if tag in effect.tags]

    def list_effects(self) -> list[Effect]:
        return list(self._effects.values())

    def effect_ids(self) -> list[str]:
        return list(self._effects.keys())

    def replace(self, effects: Iterable[Effect]) -> None:
        """Atomically replace the whole loaded set."""
        indexed = self._index(effects)
        with self._write_lock:
            self._effects = indexed
        logger.info("Effect catalog replaced", effects=len(indexed))

    def add(self, effect: Effect) -> None:
        """Add or overwrite a single effect (copy-on-write)."""
        with self._write_lock:
            updated = dict(self._effects)
            updated[effect.id] = effect
            self._effects = MappingProxyType(updated)
        logger.debug("Effect added", effect_id=effect.id)

    def remove(self, effect_id: str) -> bool:
        with self._write_lock:
            if effect_id not in self._effects:
                return False
            updated = dict(self._effects)
            del updated[effect_id]
            self._effects = MappingProxyType(updated)
        logger.debug("Effect removed", effect_id=effect_id)
        return True

    def __contains__(self, effect_id: object) -> bool:
        return effect_id in self._effects

    def __len__(self) -> int:
        return len(self._effects)
