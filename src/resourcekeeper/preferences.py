"""Persisted per-resource enabled flag."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.protocols import KeyValueStore

log = structlog.get_logger()

ENABLED_KEY_PREFIX = "resource_enabled:"


class PreferenceStore:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def is_enabled(self, descriptor: ResourceDescriptor) -> bool:
        """Return the saved flag, falling back to the descriptor default when absent or corrupt."""
        key = ENABLED_KEY_PREFIX + descriptor.id
        raw = await self._store.get(key)
        if raw is None:
            return descriptor.enabled_by_default
        try:
            value = json.loads(raw)
        except ValueError:
            value = None
        if not isinstance(value, bool):
            log.warning("preference_corrupt_value", key=key)
            return descriptor.enabled_by_default
        return value

    async def set_enabled(self, descriptor: ResourceDescriptor, enabled: bool) -> None:
        await self._store.set(ENABLED_KEY_PREFIX + descriptor.id, json.dumps(enabled))

    async def reset(self, descriptor: ResourceDescriptor) -> None:
        """Forget the saved flag so the descriptor default applies again."""
        await self._store.delete(ENABLED_KEY_PREFIX + descriptor.id)
