"""TTL cache of fetched payloads, one entry per descriptor.

Entries are stored as JSON ``{"payload", "fetchedAt", "sourceURL"}`` under
``resource_cache:<descriptor id>``. An entry is a miss when it is absent,
older than the descriptor's TTL, or was fetched from a URL that is no longer
among the descriptor's sources. Unparseable data is a miss as well; it is
logged and never raised.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError

from resourcekeeper.errors import CacheCorruption
from resourcekeeper.models.cache import CacheEntry

if TYPE_CHECKING:
    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.protocols import KeyValueStore

log = structlog.get_logger()

CACHE_KEY_PREFIX = "resource_cache:"


class _StoredEntry(BaseModel):
    """On-disk shape of a cache entry."""

    model_config = ConfigDict(populate_by_name=True)

    payload: str = Field(min_length=1)
    fetched_at: AwareDatetime = Field(alias="fetchedAt")
    source_url: str = Field(alias="sourceURL")


def cache_key(descriptor_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}{descriptor_id}"


def _parse(raw: str) -> _StoredEntry:
    try:
        return _StoredEntry.model_validate_json(raw)
    except ValidationError as exc:
        raise CacheCorruption(str(exc)) from exc


class CacheStore:
    """Payload cache on top of a KeyValueStore."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def get(self, descriptor: ResourceDescriptor) -> CacheEntry | None:
        """Return the cached entry, or ``None`` on miss, expiry, source change or corruption."""
        key = cache_key(descriptor.id)
        raw = await self._store.get(key)
        if raw is None:
            return None

        try:
            stored = _parse(raw)
        except CacheCorruption:
            log.warning("cache_corrupt_entry", key=key, exc_info=True)
            return None

        if stored.source_url not in descriptor.sources:
            log.debug("cache_source_changed", key=key, source_url=stored.source_url)
            return None

        if descriptor.cache_ttl_hours is not None:
            age = datetime.now(UTC) - stored.fetched_at
            if age > timedelta(hours=descriptor.cache_ttl_hours):
                log.debug("cache_expired", key=key, age_seconds=int(age.total_seconds()))
                return None

        return CacheEntry(
            descriptor_id=descriptor.id,
            payload=stored.payload,
            fetched_at=stored.fetched_at,
            source_url=stored.source_url,
        )

    async def put(self, descriptor: ResourceDescriptor, payload: str, source_url: str) -> None:
        """Overwrite the descriptor's entry. Last write wins."""
        stored = _StoredEntry(
            payload=payload,
            fetched_at=datetime.now(UTC),
            source_url=source_url,
        )
        await self._store.set(
            cache_key(descriptor.id),
            stored.model_dump_json(by_alias=True),
        )

    async def invalidate(self, descriptor: ResourceDescriptor) -> None:
        await self._store.delete(cache_key(descriptor.id))

    async def clear(self) -> int:
        """Drop every cached payload. Returns the number of entries removed."""
        removed = await self._store.delete_prefix(CACHE_KEY_PREFIX)
        log.info("cache_cleared", removed=removed)
        return removed
