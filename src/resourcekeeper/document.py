"""In-process host document.

``MemoryDocument`` models the parts of a live page the engine touches: named
containers holding nodes, structural mutation records delivered synchronously
to observers, a per-document object-URL registry, and inspection of how many
style rules a node exposes. Other code (the "page") may mutate it at any time,
which is what the reconciliation loop defends against.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from resourcekeeper.errors import DocumentError

log = structlog.get_logger()

_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


@dataclass
class Node:
    node_id: str
    tag: str  # "style" | "link" | anything the page adds itself
    text: str = ""
    href: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MutationRecord:
    container: str
    added: tuple[Node, ...] = ()
    removed: tuple[Node, ...] = ()


def count_rules(text: str) -> int:
    """Count rule blocks in a stylesheet body, ignoring comments."""
    return _COMMENT.sub("", text).count("{")


class _Observation:
    def __init__(
        self,
        document: MemoryDocument,
        container: str,
        callback: Callable[[MutationRecord], None],
    ) -> None:
        self._document = document
        self.container = container
        self.callback = callback

    def disconnect(self) -> None:
        self._document._detach(self)


class MemoryDocument:
    """HostDocument implementation backed by plain Python containers.

    ``blocked_tags`` simulates a content policy: appending a node whose tag is
    listed raises ``DocumentError``. ``external_sheets`` maps external URLs to
    the bodies the page managed to load for them; nodes referencing any other
    external URL cannot be inspected (cross-origin sheets normally cannot).
    """

    def __init__(
        self,
        containers: tuple[str, ...] = ("head", "body"),
        *,
        blocked_tags: frozenset[str] = frozenset(),
        external_sheets: dict[str, str] | None = None,
    ) -> None:
        self._containers: dict[str, list[Node]] = {name: [] for name in containers}
        self._observers: list[_Observation] = []
        self._object_urls: dict[str, str] = {}
        self.blocked_tags = blocked_tags
        self.external_sheets = dict(external_sheets or {})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, node_id: str) -> Node | None:
        for nodes in self._containers.values():
            for node in nodes:
                if node.node_id == node_id:
                    return node
        return None

    def count(self, node_id: str) -> int:
        return sum(
            1 for nodes in self._containers.values() for node in nodes if node.node_id == node_id
        )

    def nodes(self, container: str) -> list[Node]:
        return list(self._containers.get(container, []))

    def rule_count(self, node_id: str) -> int | None:
        """Return the node's rule count, or None when it cannot be inspected."""
        node = self.query(node_id)
        if node is None:
            return 0
        if node.tag == "style":
            return count_rules(node.text)
        if node.href is None:
            return None
        if node.href in self._object_urls:
            return count_rules(self._object_urls[node.href])
        if node.href.startswith("blob:"):
            # Revoked object URL: the sheet failed to load
            return 0
        if node.href in self.external_sheets:
            return count_rules(self.external_sheets[node.href])
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, container: str, node: Node) -> None:
        if container not in self._containers:
            raise DocumentError(f"Container {container!r} does not exist")
        if node.tag in self.blocked_tags:
            raise DocumentError(f"Content policy blocks <{node.tag}> nodes")
        self._containers[container].append(node)
        self._notify(MutationRecord(container=container, added=(node,)))

    def remove(self, node_id: str) -> Node | None:
        """Remove the first node with ``node_id``. Returns it, or None if absent."""
        for container, nodes in self._containers.items():
            for index, node in enumerate(nodes):
                if node.node_id == node_id:
                    del nodes[index]
                    self._notify(MutationRecord(container=container, removed=(node,)))
                    return node
        return None

    def clear(self, container: str) -> None:
        """Drop every node in a container, as a page re-render would."""
        removed = tuple(self._containers.get(container, []))
        if not removed:
            return
        self._containers[container] = []
        self._notify(MutationRecord(container=container, removed=removed))

    # ------------------------------------------------------------------
    # Object URLs
    # ------------------------------------------------------------------

    def create_object_url(self, payload: str, content_type: str) -> str:
        url = f"blob:{uuid.uuid4()}"
        self._object_urls[url] = payload
        log.debug("object_url_created", url=url, content_type=content_type, size=len(payload))
        return url

    def revoke_object_url(self, url: str) -> None:
        self._object_urls.pop(url, None)

    @property
    def live_object_urls(self) -> frozenset[str]:
        return frozenset(self._object_urls)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(self, container: str, callback: Callable[[MutationRecord], None]) -> _Observation:
        observation = _Observation(self, container, callback)
        self._observers.append(observation)
        return observation

    def _detach(self, observation: _Observation) -> None:
        if observation in self._observers:
            self._observers.remove(observation)

    def _notify(self, record: MutationRecord) -> None:
        # Snapshot: callbacks may disconnect while being notified
        for observation in list(self._observers):
            if observation.container == record.container:
                observation.callback(record)
