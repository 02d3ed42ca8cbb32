"""Resource registry: descriptors from settings and an optional JSON file."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from resourcekeeper.models.descriptor import ResourceDescriptor

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

log = structlog.get_logger()


def load_registry(path: Path | None) -> list[ResourceDescriptor]:
    """Load descriptors from a JSON array file.

    Returns an empty list when the path is unset, missing or unreadable.
    Individual invalid entries are skipped and logged; the valid ones are kept.
    """
    if path is None:
        return []
    if not path.is_file():
        log.debug("registry_file_missing", path=str(path))
        return []

    try:
        raw_entries = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        log.warning("registry_file_invalid", path=str(path), exc_info=True)
        return []
    if not isinstance(raw_entries, list):
        log.warning("registry_file_invalid", path=str(path), reason="not_a_list")
        return []

    descriptors: list[ResourceDescriptor] = []
    for index, raw in enumerate(raw_entries):
        try:
            descriptors.append(ResourceDescriptor.model_validate(raw))
        except ValidationError as exc:
            log.warning(
                "registry_entry_invalid",
                path=str(path),
                index=index,
                errors=exc.error_count(),
            )
    log.info("registry_loaded", path=str(path), entries=len(descriptors))
    return descriptors


def build_registry(descriptors: Iterable[ResourceDescriptor]) -> dict[str, ResourceDescriptor]:
    """Index descriptors by id. Later duplicates are dropped with a warning."""
    by_id: dict[str, ResourceDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.id in by_id:
            log.warning("registry_duplicate_id", resource_id=descriptor.id)
            continue
        by_id[descriptor.id] = descriptor
    return by_id
