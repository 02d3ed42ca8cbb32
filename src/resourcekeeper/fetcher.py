"""Ranked, fault-tolerant payload fetching.

``FetchPipeline`` walks an injected list of strategies in priority order.
For each strategy every source of the descriptor is tried in turn; the first
plausible payload wins and nothing after it is attempted. Each attempt runs
under its own timeout and is recorded as a ``FetchAttempt``. When everything
fails a single ``FetchError`` carries every attempt.

All network I/O goes through one ``httpx.AsyncClient`` shared by the
strategies. The client is created by the server lifespan, which owns its
lifecycle.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
import structlog

from resourcekeeper.errors import FetchError
from resourcekeeper.models.engine import FetchAttempt, FetchResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from resourcekeeper.config import FetchSettings
    from resourcekeeper.models.descriptor import ResourceDescriptor
    from resourcekeeper.protocols import FetchStrategy

log = structlog.get_logger()

_ACCEPT = "text/css,*/*"

# Leading text of bodies that are error pages rather than the artifact
ERROR_PAGE_MARKERS: tuple[str, ...] = (
    "<!doctype html",
    "<html",
    "404: not found",
    "400: invalid request",
    "access denied",
    '{"error"',
)


class StrategyFailure(Exception):
    """A single strategy could not produce a body for a source."""


def build_http_client(settings: FetchSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def implausibility(payload: str | None, min_length: int) -> str | None:
    """Return why ``payload`` is not a usable artifact, or None when it is."""
    if payload is None:
        return "no body"
    stripped = payload.strip()
    if not stripped:
        return "empty body"
    if len(stripped) < min_length:
        return f"body too short ({len(stripped)} < {min_length} chars)"
    head = stripped[:64].lower()
    for marker in ERROR_PAGE_MARKERS:
        if head.startswith(marker):
            return f"error page marker {marker!r}"
    return None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class DirectFetchStrategy:
    """Plain GET of the source URL."""

    def __init__(self, client: httpx.AsyncClient, *, timeout: float | None = None) -> None:
        self._client = client
        self.name = "direct"
        self.timeout = timeout

    async def fetch(self, url: str) -> str:
        response = await self._client.get(
            url, headers={"Accept": _ACCEPT, "Cache-Control": "no-cache"}
        )
        if not response.is_success:
            raise StrategyFailure(f"HTTP {response.status_code}")
        return response.text


class RelayFetchStrategy:
    """GET through a third-party relay that re-serves the source URL.

    ``template`` contains ``{url}``, which receives the percent-encoded source.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        relay_name: str,
        template: str,
        *,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._template = template
        self.name = f"relay:{relay_name}"
        self.timeout = timeout

    def relay_url(self, url: str) -> str:
        return self._template.format(url=quote(url, safe=""))

    async def fetch(self, url: str) -> str:
        response = await self._client.get(self.relay_url(url), headers={"Accept": _ACCEPT})
        if not response.is_success:
            raise StrategyFailure(f"HTTP {response.status_code} from relay")
        return response.text


class OpaqueProbeStrategy:
    """Last resort: GET the source and take whatever body comes back.

    The status code is not consulted; plausibility checks in the pipeline
    decide whether the body is usable.
    """

    def __init__(self, client: httpx.AsyncClient, *, timeout: float | None = None) -> None:
        self._client = client
        self.name = "opaque-probe"
        self.timeout = timeout

    async def fetch(self, url: str) -> str:
        response = await self._client.get(url)
        return response.text


def default_fetch_strategies(
    client: httpx.AsyncClient, settings: FetchSettings
) -> list[FetchStrategy]:
    """Build the standard ranked strategy list: direct, relays, opaque probe."""
    strategies: list[FetchStrategy] = [DirectFetchStrategy(client)]
    for relay_name, template in settings.relay_templates.items():
        strategies.append(RelayFetchStrategy(client, relay_name, template))
    if settings.opaque_probe:
        strategies.append(OpaqueProbeStrategy(client))
    return strategies


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class FetchPipeline:
    def __init__(self, strategies: Sequence[FetchStrategy], settings: FetchSettings) -> None:
        self._strategies = list(strategies)
        self._settings = settings

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    async def fetch(self, descriptor: ResourceDescriptor) -> FetchResult:
        """Return the first plausible payload. Raises FetchError when every attempt fails."""
        fetch_log = log.bind(resource_id=descriptor.id)
        attempts: list[FetchAttempt] = []

        for strategy in self._strategies:
            timeout = strategy.timeout or self._settings.timeout_seconds
            for source_url in descriptor.sources:
                started_at = datetime.now(UTC)
                payload: str | None = None
                try:
                    payload = await asyncio.wait_for(strategy.fetch(source_url), timeout=timeout)
                    reason = implausibility(payload, self._settings.min_payload_length)
                except TimeoutError:
                    reason = f"timed out after {timeout:g}s"
                except StrategyFailure as exc:
                    reason = str(exc)
                except httpx.HTTPError as exc:
                    reason = f"network error: {exc!r}"
                except Exception as exc:
                    # Invalid URLs, broken relay templates, faulty injected strategies
                    reason = f"unexpected error: {exc!r}"
                    fetch_log.warning(
                        "fetch_strategy_error",
                        strategy=strategy.name,
                        url=source_url,
                        exc_info=True,
                    )

                if reason is None and payload is not None:
                    attempts.append(
                        FetchAttempt(
                            strategy_name=strategy.name,
                            source_url=source_url,
                            started_at=started_at,
                            outcome="success",
                            payload_length=len(payload),
                        )
                    )
                    fetch_log.info(
                        "fetch_complete",
                        strategy=strategy.name,
                        url=source_url,
                        content_length=len(payload),
                        attempts=len(attempts),
                    )
                    return FetchResult(
                        payload=payload,
                        source_url=source_url,
                        strategy_name=strategy.name,
                        attempts=attempts,
                    )

                attempts.append(
                    FetchAttempt(
                        strategy_name=strategy.name,
                        source_url=source_url,
                        started_at=started_at,
                        outcome="failure",
                        reason=reason,
                    )
                )
                fetch_log.debug(
                    "fetch_attempt_failed", strategy=strategy.name, url=source_url, reason=reason
                )

        fetch_log.warning("fetch_exhausted", attempts=len(attempts))
        raise FetchError(descriptor.id, attempts)
