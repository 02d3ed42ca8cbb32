"""Tool handler for clear_cache.

Drops every cached payload. Applied artifacts stay in the document; the next
enable, refresh or reapplication fetches from the network.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from resourcekeeper.models.tools import ClearCacheOutput

if TYPE_CHECKING:
    from resourcekeeper.state import AppState


async def handle(state: AppState) -> dict:
    """Handle a clear_cache tool call."""
    log = structlog.get_logger().bind(tool="clear_cache")
    log.info("handler_called")

    removed = await state.cache.clear()
    return ClearCacheOutput(removed=removed).model_dump(mode="json")
