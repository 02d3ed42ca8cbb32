"""Reconciliation: keep the artifact applied while the resource is enabled.

Two interchangeable watchers implement the ``Watcher`` protocol:

- ``MutationWatcher`` (passive) listens to structural mutations of the
  artifact's container and triggers a throttled reapply when the artifact
  node is removed.
- ``PollingWatcher`` (aggressive) checks ``is_applied`` on a fixed interval,
  up to a bounded number of checks, then stops on its own.

``ReconciliationLoop`` picks one per descriptor and drives the
``idle -> watching -> idle`` state machine on the ``EngineContext``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from resourcekeeper.models.engine import ApplicationState, WatchState
from resourcekeeper.throttle import Throttle

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from resourcekeeper.apply import ApplyEngine
    from resourcekeeper.config import ReconcileSettings
    from resourcekeeper.document import MutationRecord
    from resourcekeeper.protocols import HostDocument, Subscription, Watcher
    from resourcekeeper.state import EngineContext

log = structlog.get_logger()


@dataclass
class ReconciliationTicket:
    """Exists only while the loop is watching."""

    mode: str
    started_at: datetime
    handle: Watcher

    @property
    def checks(self) -> int:
        return self.handle.checks


class MutationWatcher:
    mode = "passive"

    def __init__(
        self,
        ctx: EngineContext,
        document: HostDocument,
        reapply: Callable[[], Awaitable[bool]],
        *,
        throttle_seconds: float,
    ) -> None:
        self._ctx = ctx
        self._document = document
        self._reapply = reapply
        self._throttle = Throttle(throttle_seconds, self._fire)
        self._subscription: Subscription | None = None
        self.checks = 0

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self._document.observe(
            self._ctx.descriptor.container, self._on_mutation
        )

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.disconnect()
            self._subscription = None
        self._throttle.cancel()

    def _on_mutation(self, record: MutationRecord) -> None:
        target = self._ctx.descriptor.target_selector
        if not any(node.node_id == target for node in record.removed):
            return
        if not self._ctx.enabled:
            return
        # Removals made by the engine while it (re)applies the artifact
        if self._ctx.in_flight or self._ctx.state is ApplicationState.APPLYING:
            return
        self.checks += 1
        self._throttle.trigger("artifact_removed")

    async def _fire(self, reason: str) -> None:
        log.debug("reconcile_reapply", resource_id=self._ctx.descriptor.id, mode=self.mode)
        await self._reapply()


class PollingWatcher:
    mode = "aggressive"

    def __init__(
        self,
        ctx: EngineContext,
        is_applied: Callable[[], bool],
        reapply: Callable[[], Awaitable[bool]],
        *,
        interval_seconds: float,
        max_checks: int,
        on_exhausted: Callable[[], None] | None = None,
    ) -> None:
        self._ctx = ctx
        self._is_applied = is_applied
        self._reapply = reapply
        self._interval = interval_seconds
        self._max_checks = max_checks
        self._on_exhausted = on_exhausted
        self._task: asyncio.Task[None] | None = None
        self.checks = 0

    @property
    def active(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        resource_id = self._ctx.descriptor.id
        while self.checks < self._max_checks:
            await asyncio.sleep(self._interval)
            self.checks += 1
            if not self._ctx.enabled or self._is_applied():
                continue
            log.debug(
                "reconcile_reapply", resource_id=resource_id, mode=self.mode, check=self.checks
            )
            try:
                await self._reapply()
            except Exception:
                log.warning("reconcile_reapply_error", resource_id=resource_id, exc_info=True)

        # Deliberate bound, not a failure: the applied state is left as it is.
        log.info("reconciliation_bound_reached", resource_id=resource_id, checks=self.checks)
        self._task = None
        if self._on_exhausted is not None:
            self._on_exhausted()


class ReconciliationLoop:
    def __init__(
        self,
        ctx: EngineContext,
        engine: ApplyEngine,
        reapply: Callable[[], Awaitable[bool]],
        settings: ReconcileSettings,
    ) -> None:
        self._ctx = ctx
        self._engine = engine
        self._reapply = reapply
        self._settings = settings
        self._watcher: Watcher | None = None

    @property
    def watching(self) -> bool:
        return self._watcher is not None

    def start(self) -> None:
        """Begin watching. No-op when already watching."""
        if self._watcher is not None:
            return
        watcher = self._build_watcher()
        self._watcher = watcher
        self._ctx.watch_state = WatchState.WATCHING
        self._ctx.ticket = ReconciliationTicket(
            mode=watcher.mode,
            started_at=datetime.now(UTC),
            handle=watcher,
        )
        watcher.start()
        log.debug("reconcile_started", resource_id=self._ctx.descriptor.id, mode=watcher.mode)

    def stop(self) -> None:
        """Tear down synchronously. Safe from idle."""
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.stop()
            log.debug("reconcile_stopped", resource_id=self._ctx.descriptor.id)
        self._ctx.watch_state = WatchState.IDLE
        self._ctx.ticket = None

    def _build_watcher(self) -> Watcher:
        if self._ctx.descriptor.aggressive_reconciliation:
            return PollingWatcher(
                self._ctx,
                lambda: self._engine.is_applied(self._ctx),
                self._reapply,
                interval_seconds=self._settings.poll_interval_seconds,
                max_checks=self._settings.max_checks,
                on_exhausted=self._on_exhausted,
            )
        return MutationWatcher(
            self._ctx,
            self._engine.document,
            self._reapply,
            throttle_seconds=self._settings.throttle_seconds,
        )

    def _on_exhausted(self) -> None:
        self._watcher = None
        self._ctx.watch_state = WatchState.IDLE
        self._ctx.ticket = None

