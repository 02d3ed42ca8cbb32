"""Tool handler for get_resource_status."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from resourcekeeper.errors import ErrorCode, ResourceKeeperError
from resourcekeeper.models.tools import ResourceIdInput

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(resource_id: str, state: AppState) -> dict:
    """Handle a get_resource_status tool call. Returns the diagnostic snapshot."""
    log = structlog.get_logger().bind(tool="get_resource_status", resource_id=resource_id)
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
    return controller.snapshot().model_dump(mode="json")
