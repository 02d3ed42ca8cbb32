from __future__ import annotations

from resourcekeeper.models.cache import CacheEntry
from resourcekeeper.models.descriptor import ResourceDescriptor
from resourcekeeper.models.engine import (
    ApplicationState,
    DiagnosticSnapshot,
    FetchAttempt,
    FetchResult,
    WatchState,
)
from resourcekeeper.models.tools import (
    ClearCacheOutput,
    HostEventInput,
    HostEventOutput,
    ListResourcesOutput,
    ResetResourceOutput,
    ResourceIdInput,
    ResourceSummary,
    SetEnabledOutput,
)

__all__ = [
    # descriptor
    "ResourceDescriptor",
    # cache
    "CacheEntry",
    # engine
    "ApplicationState",
    "WatchState",
    "FetchAttempt",
    "FetchResult",
    "DiagnosticSnapshot",
    # tools
    "ResourceIdInput",
    "SetEnabledOutput",
    "ResourceSummary",
    "ListResourcesOutput",
    "HostEventInput",
    "HostEventOutput",
    "ClearCacheOutput",
    "ResetResourceOutput",
]
