"""Tool handler for host_event: forwards navigation, visibility and focus
events to every enabled controller. Reapplies happen later, throttled."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from resourcekeeper.errors import ErrorCode, ResourceKeeperError
from resourcekeeper.models.tools import HostEventInput, HostEventOutput

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(trigger: str, state: AppState) -> dict:
    """Handle a host_event tool call."""
    log = structlog.get_logger().bind(tool="host_event", trigger=trigger)
    log.info("handler_called")

    try:
        validated = HostEventInput.model_validate({"trigger": trigger})
    except ValidationError as exc:
        raise ResourceKeeperError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Unsupported host trigger: {trigger!r}",
            suggestion="Use one of: navigation, visibility, focus.",
            recoverable=False,
        ) from exc

    notified: list[str] = []
    for resource_id, controller in state.controllers.items():
        if controller.enabled:
            controller.notify(validated.trigger)
            notified.append(resource_id)

    return HostEventOutput(trigger=validated.trigger, notified=notified).model_dump(mode="json")
