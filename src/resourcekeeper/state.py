"""Runtime state containers.

``EngineContext`` is the explicit per-descriptor state threaded through the
apply engine, reconciliation loop and controller. ``AppState`` is created once
at server startup (inside the FastMCP lifespan context manager) and injected
into every tool handler via the MCP Context object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from resourcekeeper.errors import ErrorCode, ResourceKeeperError
from resourcekeeper.models.engine import ApplicationState, WatchState

if TYPE_CHECKING:
    from datetime import datetime

    import httpx

    from resourcekeeper.cache import CacheStore
    from resourcekeeper.config import Settings
    from resourcekeeper.controller import EngineController
    from resourcekeeper.document import MemoryDocument
    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.models.engine import FetchAttempt
    from resourcekeeper.reconcile import ReconciliationTicket


@dataclass
class EngineContext:
    """Everything the engine knows about one descriptor. Never persisted."""

    descriptor: ResourceDescriptor

    # Desired state
    enabled: bool = False

    # Apply state machine
    state: ApplicationState = ApplicationState.UNAPPLIED
    in_flight: bool = False
    applied_technique: str | None = None
    applied_at: datetime | None = None
    object_url: str | None = None  # Live indirect handle, released on remove
    payload: str | None = None
    payload_origin: Literal["cache", "network"] | None = None
    source_url: str | None = None

    # Reconciliation
    watch_state: WatchState = WatchState.IDLE
    ticket: ReconciliationTicket | None = None

    # Diagnostics
    last_fetch_attempts: list[FetchAttempt] = field(default_factory=list)
    apply_failures: list[tuple[str, str]] = field(default_factory=list)
    last_error: str | None = None


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    document: MemoryDocument
    controllers: dict[str, EngineController] = field(default_factory=dict)
    cache: CacheStore | None = None
    http_client: httpx.AsyncClient | None = None

    def controller_for(self, resource_id: str) -> EngineController:
        """Return the controller for ``resource_id`` or raise RESOURCE_NOT_FOUND."""
        controller = self.controllers.get(resource_id)
        if controller is None:
            raise ResourceKeeperError(
                code=ErrorCode.RESOURCE_NOT_FOUND,
                message=f"Resource '{resource_id}' is not registered.",
                suggestion="Call list_resources to see the registered resource IDs.",
                recoverable=False,
            )
        return controller
