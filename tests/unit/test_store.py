"""Unit tests for resourcekeeper.store."""

from __future__ import annotations

import aiosqlite

from resourcekeeper.store import MemoryKeyValueStore, SqliteKeyValueStore


class TestSqliteKeyValueStore:
    async def test_set_and_get(self, kv_store: SqliteKeyValueStore) -> None:
        await kv_store.set("resource_cache:theme", '{"payload": "x"}')
        assert await kv_store.get("resource_cache:theme") == '{"payload": "x"}'

    async def test_get_missing_returns_none(self, kv_store: SqliteKeyValueStore) -> None:
        assert await kv_store.get("missing") is None

    async def test_set_overwrites(self, kv_store: SqliteKeyValueStore) -> None:
        await kv_store.set("key", "one")
        await kv_store.set("key", "two")
        assert await kv_store.get("key") == "two"

    async def test_delete(self, kv_store: SqliteKeyValueStore) -> None:
        await kv_store.set("key", "value")
        await kv_store.delete("key")
        assert await kv_store.get("key") is None

    async def test_delete_prefix_only_matches_prefix(self, kv_store: SqliteKeyValueStore) -> None:
        await kv_store.set("resource_cache:a", "1")
        await kv_store.set("resource_cache:b", "2")
        await kv_store.set("resource_enabled:a", "true")
        # "_" must be matched literally, not as a LIKE wildcard
        await kv_store.set("resourceXcache:c", "3")

        deleted = await kv_store.delete_prefix("resource_cache:")

        assert deleted == 2
        assert await kv_store.get("resource_cache:a") is None
        assert await kv_store.get("resource_enabled:a") == "true"
        assert await kv_store.get("resourceXcache:c") == "3"

    async def test_read_failure_returns_none(self, kv_store: SqliteKeyValueStore) -> None:
        """Simulate a database read error: should return None, not raise."""
        original_execute = kv_store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        kv_store._db.execute = failing_execute  # type: ignore[assignment]
        assert await kv_store.get("key") is None
        kv_store._db.execute = original_execute  # type: ignore[assignment]

    async def test_write_failure_does_not_raise(self, kv_store: SqliteKeyValueStore) -> None:
        original_execute = kv_store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        kv_store._db.execute = failing_execute  # type: ignore[assignment]
        await kv_store.set("key", "value")
        await kv_store.delete("key")
        assert await kv_store.delete_prefix("key") == 0
        kv_store._db.execute = original_execute  # type: ignore[assignment]


class TestMemoryKeyValueStore:
    async def test_initial_contents(self) -> None:
        store = MemoryKeyValueStore({"a": "1"})
        assert await store.get("a") == "1"

    async def test_delete_missing_is_noop(self) -> None:
        store = MemoryKeyValueStore()
        await store.delete("missing")
        assert store.data == {}

    async def test_delete_prefix(self) -> None:
        store = MemoryKeyValueStore({"p:a": "1", "p:b": "2", "q:a": "3"})
        assert await store.delete_prefix("p:") == 2
        assert store.data == {"q:a": "3"}
