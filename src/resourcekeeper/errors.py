from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from resourcekeeper.models.engine import FetchAttempt


class ErrorCode(StrEnum):
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    FETCH_FAILED = "FETCH_FAILED"
    APPLY_FAILED = "APPLY_FAILED"
    INVALID_INPUT = "INVALID_INPUT"


class ResourceKeeperError(Exception):
    """Raised for all expected failure conditions.

    The engine controller catches fetch and apply failures and turns them into
    bounded retries. Tool handlers let the remaining errors propagate to
    server.py, which serialises them into the MCP error response.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class FetchError(ResourceKeeperError):
    """Every fetch strategy failed for every source of a descriptor."""

    def __init__(self, resource_id: str, attempts: list[FetchAttempt]) -> None:
        reasons = "; ".join(
            f"{attempt.strategy_name} {attempt.source_url}: {attempt.reason}"
            for attempt in attempts
        )
        super().__init__(
            code=ErrorCode.FETCH_FAILED,
            message=f"All fetch strategies failed for '{resource_id}': {reasons or 'no attempts'}",
            suggestion="Check the resource source URLs and network connectivity.",
            recoverable=True,
        )
        self.resource_id = resource_id
        self.attempts = attempts


class ApplyError(ResourceKeeperError):
    """Every injection technique failed to produce a verified artifact."""

    def __init__(self, resource_id: str, failures: list[tuple[str, str]]) -> None:
        reasons = "; ".join(f"{technique}: {reason}" for technique, reason in failures)
        super().__init__(
            code=ErrorCode.APPLY_FAILED,
            message=f"All injection techniques failed for '{resource_id}': {reasons or 'none'}",
            suggestion="The host document may block every supported injection technique.",
            recoverable=True,
        )
        self.resource_id = resource_id
        self.failures = failures


class CacheCorruption(Exception):
    """Stored cache data could not be parsed. Always recovered as a cache miss."""


class DocumentError(Exception):
    """The host document refused a mutation (missing container, content policy)."""
