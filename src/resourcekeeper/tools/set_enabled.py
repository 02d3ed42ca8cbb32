"""Tool handler for set_resource_enabled.

Persists the enabled flag and drives the controller's enable or disable path.
Fetch and apply failures never surface here: they are retried inside the
controller and reported through ``applied`` and ``state`` in the output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from resourcekeeper.errors import ErrorCode, ResourceKeeperError
from resourcekeeper.models.tools import ResourceIdInput, SetEnabledOutput

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(resource_id: str, enabled: bool, state: AppState) -> dict:
    """Handle a set_resource_enabled tool call."""
    log = structlog.get_logger().bind(tool="set_resource_enabled", resource_id=resource_id)
    log.info("handler_called", enabled=enabled)

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
    reached = await controller.set_enabled(enabled)

    output = SetEnabledOutput(
        resource_id=controller.descriptor.id,
        enabled=controller.enabled,
        applied=controller.is_applied() if enabled else False,
        state=controller.state,
    )
    log.info("toggle_complete", reached=reached, state=output.state)
    return output.model_dump(mode="json")
