"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register tools
- Start the stdio transport
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import resourcekeeper.tools.clear_cache as t_clear_cache
import resourcekeeper.tools.get_status as t_get_status
import resourcekeeper.tools.host_event as t_host_event
import resourcekeeper.tools.list_resources as t_list
import resourcekeeper.tools.refresh as t_refresh
import resourcekeeper.tools.reset_resource as t_reset
import resourcekeeper.tools.set_enabled as t_set_enabled
from resourcekeeper import __version__
from resourcekeeper.apply import ApplyEngine, default_apply_strategies
from resourcekeeper.cache import CacheStore
from resourcekeeper.config import Settings
from resourcekeeper.controller import EngineController
from resourcekeeper.document import MemoryDocument
from resourcekeeper.errors import ResourceKeeperError
from resourcekeeper.fetcher import FetchPipeline, build_http_client, default_fetch_strategies
from resourcekeeper.preferences import PreferenceStore
from resourcekeeper.registry import build_registry, load_registry
from resourcekeeper.schedulers import run_startup_apply
from resourcekeeper.state import AppState
from resourcekeeper.store import SqliteKeyValueStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable

    from resourcekeeper.models.descriptor import ResourceDescriptor

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


LOG_STREAM = sys.stderr


def _renderer(log_format: str) -> list[structlog.types.Processor]:
    """Tail of the processor chain for the configured output format."""
    if log_format == "json":
        # Tracebacks become structured fields so every line stays one JSON object
        return [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    return [structlog.dev.ConsoleRenderer(colors=LOG_STREAM.isatty())]


def _setup_logging(settings: Settings) -> None:
    """Configure structlog once at startup, before the first log call.

    Every event carries the service name and version; resource and tool
    context is bound per logger by the components themselves.
    """
    level = logging.getLevelNamesMapping()[settings.logging.level]
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service_fields,
        *_renderer(settings.logging.format),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        # stdout is reserved for the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=LOG_STREAM),
        cache_logger_on_first_use=True,
    )


def _add_service_fields(
    _logger: object, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", "resourcekeeper")
    event_dict.setdefault("version", __version__)
    return event_dict


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_controllers(
    descriptors: Iterable[ResourceDescriptor],
    *,
    cache: CacheStore,
    preferences: PreferenceStore,
    pipeline: FetchPipeline,
    engine: ApplyEngine,
    settings: Settings,
) -> dict[str, EngineController]:
    """Create one controller per registered descriptor, keyed by resource ID."""
    return {
        resource_id: EngineController(
            descriptor,
            cache=cache,
            preferences=preferences,
            pipeline=pipeline,
            engine=engine,
            apply_settings=settings.apply,
            reconcile_settings=settings.reconcile,
        )
        for resource_id, descriptor in build_registry(descriptors).items()
    }


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__)

    # Phase 1: descriptors from settings, then the optional registry file
    registry_path = Path(settings.registry_path).expanduser() if settings.registry_path else None
    descriptors = [*settings.resources, *load_registry(registry_path)]

    # Phase 2: persistent store, HTTP client, pipeline, document and engine
    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    store = SqliteKeyValueStore(db)
    await store.init_db()
    cache = CacheStore(store)
    preferences = PreferenceStore(store)

    http_client = build_http_client(settings.fetch)
    pipeline = FetchPipeline(default_fetch_strategies(http_client, settings.fetch), settings.fetch)
    document = MemoryDocument()
    engine = ApplyEngine(document, default_apply_strategies())

    state = AppState(
        settings=settings,
        document=document,
        controllers=build_controllers(
            descriptors,
            cache=cache,
            preferences=preferences,
            pipeline=pipeline,
            engine=engine,
            settings=settings,
        ),
        cache=cache,
        http_client=http_client,
    )

    startup_task = asyncio.create_task(run_startup_apply(state))

    log.info(
        "server_started",
        version=__version__,
        resources=len(state.controllers),
        fetch_strategies=pipeline.strategy_names,
    )

    try:
        yield state
    finally:
        startup_task.cancel()
        with suppress(asyncio.CancelledError):
            await startup_task
        for controller in state.controllers.values():
            await controller.close()
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("resourcekeeper", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg; set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: ResourceKeeperError) -> CallToolResult:
    """Convert a ResourceKeeperError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


def _log_tool_error(tool: str, exc: ResourceKeeperError) -> None:
    log.warning(
        "tool_error",
        tool=tool,
        code=exc.code,
        message=exc.message,
        recoverable=exc.recoverable,
    )


@mcp.tool()
async def list_resources(ctx: Context) -> object:
    """List every registered resource with its enabled flag and application state."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_list.handle(state)
    except ResourceKeeperError as exc:
        _log_tool_error("list_resources", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="list_resources", exc_info=True)
        raise


@mcp.tool()
async def set_resource_enabled(resource_id: str, enabled: bool, ctx: Context) -> object:
    """Enable or disable a resource.

    Enabling fetches the payload (cache first), applies it to the document and
    starts reconciliation. Disabling removes the artifact and stops watching.
    The choice is persisted across restarts.
    """
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_set_enabled.handle(resource_id, enabled, state)
    except ResourceKeeperError as exc:
        _log_tool_error("set_resource_enabled", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="set_resource_enabled", exc_info=True)
        raise


@mcp.tool()
async def get_resource_status(resource_id: str, ctx: Context) -> object:
    """Return the diagnostic snapshot for one resource."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_get_status.handle(resource_id, state)
    except ResourceKeeperError as exc:
        _log_tool_error("get_resource_status", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="get_resource_status", exc_info=True)
        raise


@mcp.tool()
async def refresh_resource(resource_id: str, ctx: Context) -> object:
    """Drop the cached payload for a resource and re-apply it from the network."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_refresh.handle(resource_id, state)
    except ResourceKeeperError as exc:
        _log_tool_error("refresh_resource", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="refresh_resource", exc_info=True)
        raise


@mcp.tool()
async def host_event(trigger: str, ctx: Context) -> object:
    """Report a host event (navigation, visibility or focus) to every enabled resource."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_host_event.handle(trigger, state)
    except ResourceKeeperError as exc:
        _log_tool_error("host_event", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="host_event", exc_info=True)
        raise


@mcp.tool()
async def reset_resource(resource_id: str, ctx: Context) -> object:
    """Forget the saved enabled flag and return a resource to its registry default."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_reset.handle(resource_id, state)
    except ResourceKeeperError as exc:
        _log_tool_error("reset_resource", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="reset_resource", exc_info=True)
        raise


@mcp.tool()
async def clear_cache(ctx: Context) -> object:
    """Drop every cached payload so the next apply fetches from the network."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_clear_cache.handle(state)
    except ResourceKeeperError as exc:
        _log_tool_error("clear_cache", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="clear_cache", exc_info=True)
        raise


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
