from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator


class ResourceDescriptor(BaseModel):
    """Immutable per-target configuration, read-only to the engine."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    sources: tuple[str, ...]  # Ranked candidate URLs for the same artifact
    target_selector: str  # Id of the artifact node in the host document
    container: str = "head"
    cache_ttl_hours: float | None = 6.0  # None: cached payload never expires
    aggressive_reconciliation: bool = False
    enabled_by_default: bool = True
    apply_order: tuple[str, ...] | None = None
    content_type: str = "text/css"

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not re.match(r"^[a-z0-9][a-z0-9_.-]*$", v):
            raise ValueError(f"Invalid resource ID: {v!r}")
        return v

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("sources must list at least one URL")
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invalid source URL: {url!r}")
        return v

    @field_validator("target_selector")
    @classmethod
    def validate_target_selector(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("target_selector must not be empty")
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.id
