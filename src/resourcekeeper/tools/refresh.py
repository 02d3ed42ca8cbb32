"""Tool handler for refresh_resource.

Drops the cached payload and re-applies from the network. A failed refresh
leaves any previously applied artifact in place.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from resourcekeeper.errors import ErrorCode, ResourceKeeperError
from resourcekeeper.models.tools import ResourceIdInput

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(resource_id: str, state: AppState) -> dict:
    """Handle a refresh_resource tool call."""
    log = structlog.get_logger().bind(tool="refresh_resource", resource_id=resource_id)
    log.info("handler_called")

    try:
        validated = ResourceIdInput(resource_id=resource_id)
    except ValueError as exc:
        raise ResourceKeeperError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a resource ID as returned by list_resources.",
            recoverable=False,
        ) from exc

    controller = state.controller_for(validated.resource_id)
    if not controller.enabled:
        raise ResourceKeeperError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Resource '{validated.resource_id}' is disabled.",
            suggestion="Enable the resource with set_resource_enabled before refreshing it.",
            recoverable=False,
        )

    refreshed = await controller.refresh()
    if not refreshed and controller.context.last_error is not None:
        log.warning("refresh_failed", last_error=controller.context.last_error)
    return controller.snapshot().model_dump(mode="json")
