"""Shared test fixtures for the resourcekeeper test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from resourcekeeper.apply import ApplyEngine, default_apply_strategies
from resourcekeeper.cache import CacheStore
from resourcekeeper.config import ApplySettings, FetchSettings, ReconcileSettings
from resourcekeeper.controller import EngineController
from resourcekeeper.document import MemoryDocument
from resourcekeeper.fetcher import DirectFetchStrategy, FetchPipeline
from resourcekeeper.models.descriptor import ResourceDescriptor
from resourcekeeper.preferences import PreferenceStore
from resourcekeeper.state import EngineContext
from resourcekeeper.store import MemoryKeyValueStore, SqliteKeyValueStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable

PRIMARY_URL = "https://cdn.example.com/theme.css"
MIRROR_URL = "https://mirror.example.com/theme.css"
STYLESHEET = "body { color: #222; }\n.header { margin: 0 auto; }\n"


@pytest.fixture()
def descriptor() -> ResourceDescriptor:
    """Passive descriptor with two ranked sources."""
    return ResourceDescriptor(
        id="theme",
        name="Dark Theme",
        sources=(PRIMARY_URL, MIRROR_URL),
        target_selector="theme-style",
    )


@pytest.fixture()
def aggressive_descriptor() -> ResourceDescriptor:
    return ResourceDescriptor(
        id="theme-aggressive",
        sources=(PRIMARY_URL,),
        target_selector="theme-aggressive-style",
        aggressive_reconciliation=True,
    )


@pytest.fixture()
async def kv_store() -> AsyncGenerator[SqliteKeyValueStore, None]:
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteKeyValueStore(db)
        await store.init_db()
        yield store


@pytest.fixture()
def cache_store(kv_store: SqliteKeyValueStore) -> CacheStore:
    return CacheStore(kv_store)


@pytest.fixture()
def document() -> MemoryDocument:
    return MemoryDocument()


@pytest.fixture()
def engine(document: MemoryDocument) -> ApplyEngine:
    return ApplyEngine(document, default_apply_strategies())


@pytest.fixture()
def ctx(descriptor: ResourceDescriptor) -> EngineContext:
    return EngineContext(descriptor=descriptor, enabled=True)


@pytest.fixture()
def fetch_settings() -> FetchSettings:
    return FetchSettings(timeout_seconds=1.0)


@pytest.fixture()
def apply_settings() -> ApplySettings:
    """Fast retry settings: three attempts, no backoff wait."""
    return ApplySettings(
        trigger_throttle_seconds=0.01,
        retry_max_attempts=3,
        retry_initial_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        startup_delay_seconds=0.0,
    )


@pytest.fixture()
def reconcile_settings() -> ReconcileSettings:
    return ReconcileSettings(throttle_seconds=0.01, poll_interval_seconds=0.01, max_checks=5)


@pytest.fixture()
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture()
def kv_memory() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
async def make_controller(
    kv_memory: MemoryKeyValueStore,
    engine: ApplyEngine,
    http_client: httpx.AsyncClient,
    fetch_settings: FetchSettings,
    apply_settings: ApplySettings,
    reconcile_settings: ReconcileSettings,
) -> AsyncGenerator[Callable[[ResourceDescriptor], EngineController], None]:
    """Factory for controllers sharing one store, document and direct-only pipeline."""
    created: list[EngineController] = []

    def _make(descriptor: ResourceDescriptor) -> EngineController:
        controller = EngineController(
            descriptor,
            cache=CacheStore(kv_memory),
            preferences=PreferenceStore(kv_memory),
            pipeline=FetchPipeline([DirectFetchStrategy(http_client)], fetch_settings),
            engine=engine,
            apply_settings=apply_settings,
            reconcile_settings=reconcile_settings,
        )
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        await controller.close()
