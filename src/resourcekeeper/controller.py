"""Engine controller: the single entry point for one resource.

Composes the cache, fetch pipeline, apply engine and reconciliation loop
around one ``EngineContext``. Public methods never raise fetch or apply
failures; they are retried with backoff, logged, and reported as booleans.
"""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

import structlog

from resourcekeeper.errors import ApplyError, FetchError
from resourcekeeper.models.engine import ApplicationState, DiagnosticSnapshot
from resourcekeeper.reconcile import ReconciliationLoop
from resourcekeeper.state import EngineContext
from resourcekeeper.throttle import Throttle

if TYPE_CHECKING:
    from resourcekeeper.apply import ApplyEngine
    from resourcekeeper.cache import CacheStore
    from resourcekeeper.config import ApplySettings, ReconcileSettings
    from resourcekeeper.fetcher import FetchPipeline
    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.preferences import PreferenceStore

log = structlog.get_logger()


def _jittered_delay(base_seconds: float) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


class EngineController:
    def __init__(
        self,
        descriptor: ResourceDescriptor,
        *,
        cache: CacheStore,
        preferences: PreferenceStore,
        pipeline: FetchPipeline,
        engine: ApplyEngine,
        apply_settings: ApplySettings,
        reconcile_settings: ReconcileSettings,
    ) -> None:
        self.context = EngineContext(descriptor=descriptor)
        self._cache = cache
        self._preferences = preferences
        self._pipeline = pipeline
        self._engine = engine
        self._settings = apply_settings
        self._loop = ReconciliationLoop(
            self.context, engine, self._reapply_if_missing, reconcile_settings
        )
        self._triggers = Throttle(apply_settings.trigger_throttle_seconds, self._on_trigger)
        # Set for the whole retry loop, backoff sleeps included
        self._retrying = False
        self._log = log.bind(resource_id=descriptor.id)

    @property
    def descriptor(self) -> ResourceDescriptor:
        return self.context.descriptor

    @property
    def state(self) -> ApplicationState:
        return self.context.state

    @property
    def enabled(self) -> bool:
        return self.context.enabled

    @property
    def watching(self) -> bool:
        return self._loop.watching

    @property
    def retrying(self) -> bool:
        return self._retrying

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Restore the saved preference and, when enabled, apply and start watching."""
        self.context.enabled = await self._preferences.is_enabled(self.descriptor)
        self._log.info("controller_initialized", enabled=self.context.enabled)
        if not self.context.enabled:
            return False
        applied = await self.apply_with_retry()
        if self.context.enabled:
            self._loop.start()
        return applied

    async def set_enabled(self, enabled: bool) -> bool:
        """Enable or disable the resource. Returns whether the requested state was reached."""
        await self._preferences.set_enabled(self.descriptor, enabled)
        self._log.info("resource_toggled", enabled=enabled)
        return await self._transition(enabled)

    async def reset(self) -> bool:
        """Forget the saved preference and return to the descriptor default."""
        await self._preferences.reset(self.descriptor)
        enabled = self.descriptor.enabled_by_default
        self._log.info("preference_reset", enabled=enabled)
        return await self._transition(enabled)

    async def _transition(self, enabled: bool) -> bool:
        self.context.enabled = enabled
        if not enabled:
            self._loop.stop()
            self._triggers.cancel()
            self._engine.remove(self.context)
            return True

        applied = await self.apply_with_retry()
        if self.context.enabled:
            self._loop.start()
        return applied

    async def apply_with_retry(self) -> bool:
        """Run the enable path with bounded, backed-off retries. Never raises."""
        if self._retrying:
            self._log.debug("apply_skipped", reason="retry_loop_running")
            return False
        self._retrying = True
        try:
            return await self._retry_loop()
        finally:
            self._retrying = False

    async def _retry_loop(self) -> bool:
        settings = self._settings
        delay = settings.retry_initial_delay_seconds

        for attempt in range(1, settings.retry_max_attempts + 1):
            if not self.context.enabled:
                self._log.debug("apply_abandoned", reason="disabled", attempt=attempt)
                return False
            if self.context.in_flight:
                self._log.debug("apply_skipped", reason="in_flight")
                return False

            try:
                return await self._enable_once()
            except (FetchError, ApplyError) as exc:
                self.context.last_error = exc.message
                self._log.warning(
                    "apply_attempt_failed",
                    attempt=attempt,
                    max_attempts=settings.retry_max_attempts,
                    code=exc.code,
                )
            except Exception as exc:
                self.context.last_error = f"unexpected error: {exc!r}"
                self._log.warning(
                    "apply_attempt_error",
                    attempt=attempt,
                    max_attempts=settings.retry_max_attempts,
                    exc_info=True,
                )

            if attempt < settings.retry_max_attempts:
                await asyncio.sleep(_jittered_delay(delay))
                delay = min(delay * 2, settings.retry_max_delay_seconds)

        still_applied = self._engine.is_applied(self.context)
        if not still_applied:
            self.context.state = ApplicationState.FAILED
        self._log.error(
            "apply_retries_exhausted",
            attempts=settings.retry_max_attempts,
            last_error=self.context.last_error,
            previous_artifact_kept=still_applied,
        )
        return False

    async def refresh(self) -> bool:
        """Drop the cached payload and re-apply from the network."""
        await self._cache.invalidate(self.descriptor)
        if not self.context.enabled:
            return False
        return await self.apply_with_retry()

    def is_applied(self) -> bool:
        return self._engine.is_applied(self.context)

    def notify(self, trigger: str) -> None:
        """Report a host event (navigation, visibility, focus). Throttled, last one wins."""
        if not self.context.enabled:
            return
        self._triggers.trigger(trigger)

    def snapshot(self) -> DiagnosticSnapshot:
        ctx = self.context
        ticket = ctx.ticket
        return DiagnosticSnapshot(
            resource_id=self.descriptor.id,
            name=self.descriptor.display_name,
            enabled=ctx.enabled,
            state=ctx.state,
            watch_state=ctx.watch_state,
            watch_mode=ticket.mode if ticket is not None else None,
            checks_performed=ticket.checks if ticket is not None else 0,
            is_applied=self.is_applied(),
            applied_technique=ctx.applied_technique,
            applied_at=ctx.applied_at,
            payload_length=len(ctx.payload) if ctx.payload is not None else None,
            payload_origin=ctx.payload_origin,
            source_url=ctx.source_url,
            last_fetch_attempts=list(ctx.last_fetch_attempts),
            apply_failures=[f"{technique}: {reason}" for technique, reason in ctx.apply_failures],
            last_error=ctx.last_error,
        )

    async def close(self) -> None:
        """Stop watching and drop pending triggers. Leaves the document untouched."""
        self._loop.stop()
        self._triggers.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _enable_once(self) -> bool:
        """Obtain a payload (cache first) and apply it.

        Raises FetchError / ApplyError on failure; returns False when the
        apply was rejected because another one is in progress.
        """
        ctx = self.context
        ctx.in_flight = True
        try:
            payload, source_url = await self._obtain_payload()
            applied = await self._engine.apply(ctx, payload, source_url=source_url)
        finally:
            ctx.in_flight = False

        if not applied:
            if ctx.state is ApplicationState.FAILED:
                raise ApplyError(self.descriptor.id, list(ctx.apply_failures))
            return False

        ctx.last_error = None
        if not ctx.enabled:
            # Disabled while the apply was in flight
            self._engine.remove(ctx)
            return False
        return True

    async def _obtain_payload(self) -> tuple[str, str]:
        ctx = self.context
        entry = await self._cache.get(self.descriptor)
        if entry is not None:
            self._log.debug("cache_hit", source_url=entry.source_url)
            ctx.payload_origin = "cache"
            return entry.payload, entry.source_url

        self._log.info("cache_miss_fetching", sources=len(self.descriptor.sources))
        try:
            result = await self._pipeline.fetch(self.descriptor)
        except FetchError as exc:
            ctx.last_fetch_attempts = exc.attempts
            raise
        ctx.last_fetch_attempts = result.attempts
        ctx.payload_origin = "network"
        await self._cache.put(self.descriptor, result.payload, result.source_url)
        return result.payload, result.source_url

    async def _reapply_if_missing(self) -> bool:
        ctx = self.context
        if self._retrying or ctx.in_flight or ctx.state is ApplicationState.APPLYING:
            return False
        if not ctx.enabled:
            return False
        if self._engine.is_applied(ctx):
            return False
        self._log.info("reapplying", previous_state=str(ctx.state))
        return await self.apply_with_retry()

    async def _on_trigger(self, trigger: str) -> None:
        self._log.debug("host_trigger", trigger=trigger)
        await self._reapply_if_missing()
