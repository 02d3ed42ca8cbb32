"""Verified, idempotent application of a payload to the host document.

``ApplyEngine.apply`` removes any existing artifact, then walks its ranked
injection techniques until one produces a node that passes verification. The
engine writes only the node identified by the descriptor's target selector.
Per-descriptor state lives on the ``EngineContext`` passed into every call.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from resourcekeeper.document import Node
from resourcekeeper.errors import DocumentError
from resourcekeeper.models.engine import ApplicationState

if TYPE_CHECKING:
    from collections.abc import Sequence

    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.protocols import ApplyStrategy, HostDocument
    from resourcekeeper.state import EngineContext

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Injection techniques
# ---------------------------------------------------------------------------


class InlineNodeStrategy:
    """Payload placed directly in a live ``style`` node."""

    name = "inline"

    async def inject(
        self,
        document: HostDocument,
        descriptor: ResourceDescriptor,
        payload: str,
        *,
        source_url: str,
    ) -> tuple[Node, str | None]:
        node = Node(
            node_id=descriptor.target_selector,
            tag="style",
            text=payload,
            attributes={"type": descriptor.content_type, "data-method": self.name},
        )
        document.append(descriptor.container, node)
        return node, None


class ObjectURLStrategy:
    """Payload registered as a document object URL and referenced by a ``link`` node."""

    name = "object-url"

    async def inject(
        self,
        document: HostDocument,
        descriptor: ResourceDescriptor,
        payload: str,
        *,
        source_url: str,
    ) -> tuple[Node, str | None]:
        object_url = document.create_object_url(payload, descriptor.content_type)
        node = Node(
            node_id=descriptor.target_selector,
            tag="link",
            href=object_url,
            attributes={
                "rel": "stylesheet",
                "type": descriptor.content_type,
                "data-method": self.name,
            },
        )
        try:
            document.append(descriptor.container, node)
        except DocumentError:
            document.revoke_object_url(object_url)
            raise
        return node, object_url


class ExternalReferenceStrategy:
    """A ``link`` node pointing at the source URL itself."""

    name = "external-reference"

    async def inject(
        self,
        document: HostDocument,
        descriptor: ResourceDescriptor,
        payload: str,
        *,
        source_url: str,
    ) -> tuple[Node, str | None]:
        node = Node(
            node_id=descriptor.target_selector,
            tag="link",
            href=source_url,
            attributes={
                "rel": "stylesheet",
                "type": descriptor.content_type,
                "crossorigin": "anonymous",
                "data-method": self.name,
            },
        )
        document.append(descriptor.container, node)
        return node, None


def default_apply_strategies() -> list[ApplyStrategy]:
    return [InlineNodeStrategy(), ObjectURLStrategy(), ExternalReferenceStrategy()]


def order_strategies(
    strategies: Sequence[ApplyStrategy], preferred: Sequence[str] | None
) -> list[ApplyStrategy]:
    """Put the techniques named in ``preferred`` first; the rest keep their order."""
    if not preferred:
        return list(strategies)
    by_name = {strategy.name: strategy for strategy in strategies}
    head = [by_name[name] for name in preferred if name in by_name]
    return head + [strategy for strategy in strategies if strategy not in head]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ApplyEngine:
    def __init__(self, document: HostDocument, strategies: Sequence[ApplyStrategy]) -> None:
        self.document = document
        self._strategies = list(strategies)

    def strategies_for(self, descriptor: ResourceDescriptor) -> list[ApplyStrategy]:
        return order_strategies(self._strategies, descriptor.apply_order)

    async def apply(self, ctx: EngineContext, payload: str, *, source_url: str = "") -> bool:
        """Attach ``payload``. Returns False if already applying or every technique failed."""
        descriptor = ctx.descriptor
        apply_log = log.bind(resource_id=descriptor.id)

        # Check-and-set with no await in between: concurrent callers see APPLYING.
        if ctx.state is ApplicationState.APPLYING:
            apply_log.debug("apply_rejected", reason="already_applying")
            return False
        # Set before touching the document so watchers ignore our own removals
        ctx.state = ApplicationState.APPLYING
        self._detach(ctx)
        ctx.applied_technique = None
        ctx.apply_failures = []
        source_url = source_url or descriptor.sources[0]

        try:
            for strategy in self.strategies_for(descriptor):
                try:
                    node, object_url = await strategy.inject(
                        self.document, descriptor, payload, source_url=source_url
                    )
                except DocumentError as exc:
                    ctx.apply_failures.append((strategy.name, str(exc)))
                    apply_log.debug(
                        "apply_technique_failed", technique=strategy.name, reason=str(exc)
                    )
                    continue
                except Exception as exc:
                    self._discard(descriptor, None)
                    ctx.apply_failures.append((strategy.name, f"unexpected error: {exc!r}"))
                    apply_log.warning(
                        "apply_technique_error", technique=strategy.name, exc_info=True
                    )
                    continue

                reason = self._verify(descriptor)
                if reason is not None:
                    self._discard(descriptor, object_url)
                    ctx.apply_failures.append((strategy.name, reason))
                    apply_log.debug(
                        "apply_technique_failed", technique=strategy.name, reason=reason
                    )
                    continue

                ctx.state = ApplicationState.APPLIED
                ctx.applied_technique = strategy.name
                ctx.object_url = object_url
                ctx.payload = payload
                ctx.source_url = source_url
                ctx.applied_at = datetime.now(UTC)
                weak = self.document.rule_count(descriptor.target_selector) is None
                apply_log.info(
                    "apply_complete",
                    technique=strategy.name,
                    node_tag=node.tag,
                    verification="weak" if weak else "rules",
                )
                return True
        except asyncio.CancelledError:
            self.remove(ctx)
            raise

        ctx.state = ApplicationState.FAILED
        apply_log.warning("apply_exhausted", failures=len(ctx.apply_failures))
        return False

    def remove(self, ctx: EngineContext) -> None:
        """Delete the artifact and release its object URL. Safe when nothing is applied."""
        self._detach(ctx)
        ctx.state = ApplicationState.UNAPPLIED
        ctx.applied_technique = None

    def _detach(self, ctx: EngineContext) -> None:
        descriptor = ctx.descriptor
        removed = 0
        while (node := self.document.remove(descriptor.target_selector)) is not None:
            removed += 1
            if node.href is not None and node.href.startswith("blob:"):
                self.document.revoke_object_url(node.href)
        if ctx.object_url is not None:
            self.document.revoke_object_url(ctx.object_url)
            ctx.object_url = None
        if removed:
            log.debug("artifact_removed", resource_id=descriptor.id, nodes=removed)

    def is_applied(self, ctx: EngineContext) -> bool:
        """Verify the live document. A lost artifact moves the context to UNAPPLIED."""
        present = self._verify(ctx.descriptor) is None
        if not present and ctx.state is ApplicationState.APPLIED:
            log.info("artifact_lost", resource_id=ctx.descriptor.id)
            if ctx.object_url is not None:
                self.document.revoke_object_url(ctx.object_url)
                ctx.object_url = None
            ctx.state = ApplicationState.UNAPPLIED
            ctx.applied_technique = None
        return present

    def _verify(self, descriptor: ResourceDescriptor) -> str | None:
        """Return why the artifact is not live, or None when it is."""
        if self.document.query(descriptor.target_selector) is None:
            return "node missing from document"
        rules = self.document.rule_count(descriptor.target_selector)
        if rules is None:
            # Present but not inspectable: accepted as a weak success
            return None
        if rules == 0:
            return "node exposes no rules"
        return None

    def _discard(self, descriptor: ResourceDescriptor, object_url: str | None) -> None:
        while self.document.remove(descriptor.target_selector) is not None:
            pass
        if object_url is not None:
            self.document.revoke_object_url(object_url)
