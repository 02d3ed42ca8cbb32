"""Background coroutines started by the server lifespan."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from resourcekeeper.state import AppState

log = structlog.get_logger()


async def run_startup_apply(state: AppState) -> None:
    """Initialise every controller once the host has had time to settle.

    Controllers are initialised concurrently; one failing never prevents the
    others from applying.
    """
    await asyncio.sleep(state.settings.apply.startup_delay_seconds)
    if not state.controllers:
        return

    controllers = list(state.controllers.values())
    results = await asyncio.gather(
        *(controller.initialize() for controller in controllers),
        return_exceptions=True,
    )
    for controller, result in zip(controllers, results, strict=True):
        if isinstance(result, BaseException):
            log.warning(
                "startup_apply_error",
                resource_id=controller.descriptor.id,
                exc_info=result,
            )
    log.info(
        "startup_apply_complete",
        resources=len(controllers),
        applied=sum(1 for result in results if result is True),
    )
