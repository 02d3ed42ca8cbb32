"""Integration test fixtures.

Provides a fully wired AppState: in-memory SQLite store, a real httpx client
(mocked per test with respx), a MemoryDocument and one controller per
descriptor, built the same way the server lifespan builds them.
"""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from resourcekeeper.apply import ApplyEngine, default_apply_strategies
from resourcekeeper.cache import CacheStore
from resourcekeeper.config import Settings
from resourcekeeper.document import MemoryDocument
from resourcekeeper.fetcher import FetchPipeline, default_fetch_strategies
from resourcekeeper.preferences import PreferenceStore
from resourcekeeper.server import build_controllers
from resourcekeeper.state import AppState
from resourcekeeper.store import SqliteKeyValueStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from resourcekeeper.models.descriptor import ResourceDescriptor


@pytest.fixture()
def integration_settings() -> Settings:
    """Direct fetch only, fast retries and reconciliation."""
    return Settings(
        fetch={"relay_templates": {}, "opaque_probe": False, "timeout_seconds": 1.0},
        apply={
            "trigger_throttle_seconds": 0.01,
            "retry_max_attempts": 2,
            "retry_initial_delay_seconds": 0.0,
            "retry_max_delay_seconds": 0.0,
            "startup_delay_seconds": 0.0,
        },
        reconcile={"throttle_seconds": 0.01, "poll_interval_seconds": 0.01, "max_checks": 3},
    )


@pytest.fixture()
async def app_state(
    integration_settings: Settings,
    descriptor: ResourceDescriptor,
    aggressive_descriptor: ResourceDescriptor,
) -> AsyncGenerator[AppState, None]:
    """Full AppState wired for tool handler tests."""
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteKeyValueStore(db)
        await store.init_db()
        cache = CacheStore(store)

        async with httpx.AsyncClient() as client:
            document = MemoryDocument()
            controllers = build_controllers(
                [descriptor, aggressive_descriptor],
                cache=cache,
                preferences=PreferenceStore(store),
                pipeline=FetchPipeline(
                    default_fetch_strategies(client, integration_settings.fetch),
                    integration_settings.fetch,
                ),
                engine=ApplyEngine(document, default_apply_strategies()),
                settings=integration_settings,
            )
            state = AppState(
                settings=integration_settings,
                document=document,
                controllers=controllers,
                cache=cache,
                http_client=client,
            )
            yield state
            for controller in controllers.values():
                await controller.close()


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Points the store at an isolated tmp directory and registers one
    descriptor that starts disabled, so startup never touches the network.
    """
    env = os.environ.copy()
    env["RESOURCEKEEPER__CACHE__DB_PATH"] = str(tmp_path / "store.db")
    env["RESOURCEKEEPER__APPLY__STARTUP_DELAY_SECONDS"] = "0"
    env["RESOURCEKEEPER__LOGGING__LEVEL"] = "WARNING"
    env["RESOURCEKEEPER__RESOURCES"] = json.dumps(
        [
            {
                "id": "theme",
                "name": "Dark Theme",
                "sources": ["http://127.0.0.1:1/theme.css"],
                "target_selector": "theme-style",
                "enabled_by_default": False,
            }
        ]
    )
    return env
