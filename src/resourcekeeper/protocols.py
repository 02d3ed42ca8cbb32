"""Protocol interfaces for swappable components.

The engine references these protocols, not the concrete implementations.
This allows:
- Tests to use lightweight in-memory implementations
- Strategy lists to be ranked and injected at construction time instead of
  branching on capability flags
- Other host documents or storage backends without changing engine code
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from resourcekeeper.document import MutationRecord, Node
    from resourcekeeper.models.descriptor import ResourceDescriptor


class KeyValueStore(Protocol):
    """Persistent string key-value storage. Implementations never raise on I/O failure."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...


class Subscription(Protocol):
    def disconnect(self) -> None: ...


class HostDocument(Protocol):
    """The live, externally-owned document the artifact is applied to."""

    def query(self, node_id: str) -> Node | None: ...

    def count(self, node_id: str) -> int: ...

    def append(self, container: str, node: Node) -> None: ...

    def remove(self, node_id: str) -> Node | None: ...

    def rule_count(self, node_id: str) -> int | None: ...

    def observe(
        self, container: str, callback: Callable[[MutationRecord], None]
    ) -> Subscription: ...

    def create_object_url(self, payload: str, content_type: str) -> str: ...

    def revoke_object_url(self, url: str) -> None: ...


class FetchStrategy(Protocol):
    """One ranked way of retrieving a source URL's body."""

    name: str
    timeout: float | None  # None: use the pipeline default

    async def fetch(self, url: str) -> str: ...


class ApplyStrategy(Protocol):
    """One ranked way of attaching a payload to the host document.

    Returns the node it attached plus any object URL it created, or raises
    ``DocumentError`` when the document refuses the technique.
    """

    name: str

    async def inject(
        self,
        document: HostDocument,
        descriptor: ResourceDescriptor,
        payload: str,
        *,
        source_url: str,
    ) -> tuple[Node, str | None]: ...


class Watcher(Protocol):
    """Keeps the applied invariant under observation until stopped."""

    mode: str

    @property
    def active(self) -> bool: ...

    @property
    def checks(self) -> int: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...
