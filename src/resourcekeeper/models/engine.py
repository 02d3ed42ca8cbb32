from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel


class ApplicationState(StrEnum):
    UNAPPLIED = "unapplied"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


class WatchState(StrEnum):
    IDLE = "idle"
    WATCHING = "watching"


class FetchAttempt(BaseModel):
    """One strategy/source attempt, kept for error aggregation and diagnostics."""

    strategy_name: str
    source_url: str
    started_at: datetime
    outcome: Literal["success", "failure"]
    reason: str | None = None  # Set for failures
    payload_length: int | None = None  # Set for successes

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"


class FetchResult(BaseModel):
    payload: str
    source_url: str
    strategy_name: str
    attempts: list[FetchAttempt]


class DiagnosticSnapshot(BaseModel):
    """Read-only view of one engine context for UI and status reporting."""

    resource_id: str
    name: str
    enabled: bool
    state: ApplicationState
    watch_state: WatchState
    watch_mode: str | None
    checks_performed: int
    is_applied: bool
    applied_technique: str | None
    applied_at: datetime | None
    payload_length: int | None
    payload_origin: Literal["cache", "network"] | None
    source_url: str | None
    last_fetch_attempts: list[FetchAttempt]
    apply_failures: list[str]
    last_error: str | None
