"""Tool handler for reset_resource.

Forgets the saved enabled flag and moves the resource to its registry
default. The default itself is not persisted, so a later registry change to
``enabled_by_default`` takes effect on the next start.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from resourcekeeper.errors import ErrorCode, ResourceKeeperError
from resourcekeeper.models.tools import ResetResourceOutput, ResourceIdInput

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(resource_id: str, state: AppState) -> dict:
    """Handle a reset_resource tool call."""
    log = structlog.get_logger().bind(tool="reset_resource", resource_id=resource_id)
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
    await controller.reset()

    return ResetResourceOutput(
        resource_id=controller.descriptor.id,
        enabled=controller.enabled,
        applied=controller.is_applied() if controller.enabled else False,
        state=controller.state,
    ).model_dump(mode="json")
