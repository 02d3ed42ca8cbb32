"""Unit tests for resourcekeeper.cache."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from resourcekeeper.cache import CACHE_KEY_PREFIX, CacheStore, cache_key
from resourcekeeper.store import MemoryKeyValueStore

if TYPE_CHECKING:
    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.store import SqliteKeyValueStore

PRIMARY_URL = "https://cdn.example.com/theme.css"
MIRROR_URL = "https://mirror.example.com/theme.css"
STYLESHEET = "body { color: #222; }\n.header { margin: 0 auto; }\n"


def _stored(payload: str, source_url: str, age: timedelta) -> str:
    fetched_at = (datetime.now(UTC) - age).isoformat()
    return json.dumps({"payload": payload, "fetchedAt": fetched_at, "sourceURL": source_url})


# ---------------------------------------------------------------------------
# Round trip and storage format
# ---------------------------------------------------------------------------


class TestPutAndGet:
    async def test_put_then_get(
        self, cache_store: CacheStore, descriptor: ResourceDescriptor
    ) -> None:
        await cache_store.put(descriptor, STYLESHEET, MIRROR_URL)
        entry = await cache_store.get(descriptor)
        assert entry is not None
        assert entry.descriptor_id == "theme"
        assert entry.payload == STYLESHEET
        assert entry.source_url == MIRROR_URL
        assert entry.fetched_at <= datetime.now(UTC)

    async def test_storage_uses_camel_case_keys(
        self, kv_store: SqliteKeyValueStore, descriptor: ResourceDescriptor
    ) -> None:
        await CacheStore(kv_store).put(descriptor, STYLESHEET, PRIMARY_URL)
        raw = await kv_store.get(cache_key("theme"))
        assert raw is not None
        assert set(json.loads(raw)) == {"payload", "fetchedAt", "sourceURL"}

    async def test_absent_entry_returns_none(
        self, cache_store: CacheStore, descriptor: ResourceDescriptor
    ) -> None:
        assert await cache_store.get(descriptor) is None

    async def test_last_write_wins(
        self, cache_store: CacheStore, descriptor: ResourceDescriptor
    ) -> None:
        await cache_store.put(descriptor, "a { color: red; }", PRIMARY_URL)
        await cache_store.put(descriptor, "b { color: blue; }", MIRROR_URL)
        entry = await cache_store.get(descriptor)
        assert entry is not None
        assert entry.payload == "b { color: blue; }"
        assert entry.source_url == MIRROR_URL


# ---------------------------------------------------------------------------
# Miss conditions
# ---------------------------------------------------------------------------


class TestMissConditions:
    async def test_expired_entry_is_miss(self, descriptor: ResourceDescriptor) -> None:
        store = MemoryKeyValueStore(
            {cache_key("theme"): _stored(STYLESHEET, PRIMARY_URL, timedelta(hours=7))}
        )
        assert await CacheStore(store).get(descriptor) is None

    async def test_entry_within_ttl_is_hit(self, descriptor: ResourceDescriptor) -> None:
        store = MemoryKeyValueStore(
            {cache_key("theme"): _stored(STYLESHEET, PRIMARY_URL, timedelta(hours=5))}
        )
        assert await CacheStore(store).get(descriptor) is not None

    async def test_no_ttl_never_expires(self, descriptor: ResourceDescriptor) -> None:
        forever = descriptor.model_copy(update={"cache_ttl_hours": None})
        store = MemoryKeyValueStore(
            {cache_key("theme"): _stored(STYLESHEET, PRIMARY_URL, timedelta(days=365))}
        )
        assert await CacheStore(store).get(forever) is not None

    async def test_source_list_change_is_miss(
        self, cache_store: CacheStore, descriptor: ResourceDescriptor
    ) -> None:
        await cache_store.put(descriptor, STYLESHEET, MIRROR_URL)
        moved = descriptor.model_copy(
            update={"sources": (PRIMARY_URL, "https://new.example.com/theme.css")}
        )
        assert await cache_store.get(moved) is None

    async def test_corrupt_json_is_miss(self, descriptor: ResourceDescriptor) -> None:
        store = MemoryKeyValueStore({cache_key("theme"): "{not json"})
        assert await CacheStore(store).get(descriptor) is None

    async def test_missing_fields_is_miss(self, descriptor: ResourceDescriptor) -> None:
        store = MemoryKeyValueStore({cache_key("theme"): json.dumps({"payload": STYLESHEET})})
        assert await CacheStore(store).get(descriptor) is None

    async def test_empty_payload_is_miss(self, descriptor: ResourceDescriptor) -> None:
        store = MemoryKeyValueStore(
            {cache_key("theme"): _stored("", PRIMARY_URL, timedelta(minutes=1))}
        )
        assert await CacheStore(store).get(descriptor) is None


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidation:
    async def test_invalidate(
        self, cache_store: CacheStore, descriptor: ResourceDescriptor
    ) -> None:
        await cache_store.put(descriptor, STYLESHEET, PRIMARY_URL)
        await cache_store.invalidate(descriptor)
        assert await cache_store.get(descriptor) is None

    async def test_clear_removes_only_cache_entries(self) -> None:
        store = MemoryKeyValueStore(
            {
                f"{CACHE_KEY_PREFIX}a": "x",
                f"{CACHE_KEY_PREFIX}b": "y",
                "resource_enabled:a": "true",
            }
        )
        removed = await CacheStore(store).clear()
        assert removed == 2
        assert store.data == {"resource_enabled:a": "true"}
