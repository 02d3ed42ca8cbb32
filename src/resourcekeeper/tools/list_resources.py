"""Tool handler for list_resources."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from resourcekeeper.models.tools import ListResourcesOutput, ResourceSummary

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(state: AppState) -> dict:
    """Handle a list_resources tool call."""
    log = structlog.get_logger().bind(tool="list_resources")
    log.info("handler_called")

    summaries = [
        ResourceSummary(
            resource_id=controller.descriptor.id,
            name=controller.descriptor.display_name,
            enabled=controller.enabled,
            state=controller.state,
            aggressive_reconciliation=controller.descriptor.aggressive_reconciliation,
            sources=list(controller.descriptor.sources),
        )
        for controller in state.controllers.values()
    ]
    return ListResourcesOutput(resources=summaries).model_dump(mode="json")
