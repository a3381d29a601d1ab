"""Shared plumbing for scout source fetchers: HTTP helpers, diagnostics, throttling."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from airbitrage.clients.tavily import TavilySearchResponse
from airbitrage.observability.metrics import metrics
from pipelines.scout.leads import SourceDiagnostic, SourceStatus

logger = logging.getLogger("pipelines.scout.sources")

SleepFn = Callable[[float], Awaitable[None]]
BLOCKED_STATUS_CODES = frozenset({403, 429})


class WebSearchClient(Protocol):
    """The slice of the Tavily client the scout pipeline depends on."""

    async def search(
        self,
        *,
        query: str,
        max_results: int = 5,
        include_answer: bool = False,
    ) -> TavilySearchResponse:
        ...


class SourceFetchError(RuntimeError):
    """A single upstream request failed; always caught and turned into a diagnostic."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def status(self) -> SourceStatus:
        if self.status_code in BLOCKED_STATUS_CODES:
            return SourceStatus.BLOCKED
        return SourceStatus.ERROR


async def fetch_response(
    http: httpx.AsyncClient,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
) -> httpx.Response:
    try:
        response = await http.get(url, headers=headers, params=params, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise SourceFetchError("timeout") from exc
    except httpx.HTTPError as exc:
        raise SourceFetchError(type(exc).__name__) from exc
    if response.status_code >= 400:
        raise SourceFetchError(f"HTTP {response.status_code}", status_code=response.status_code)
    return response


async def fetch_json(
    http: httpx.AsyncClient,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
) -> Any:
    response = await fetch_response(http, url, timeout=timeout, headers=headers, params=params)
    try:
        return response.json()
    except ValueError as exc:
        raise SourceFetchError("invalid JSON", status_code=response.status_code) from exc


async def fetch_text(
    http: httpx.AsyncClient,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
) -> str:
    response = await fetch_response(http, url, timeout=timeout, headers=headers)
    return response.text


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def make_diagnostic(
    source: str,
    started: float,
    *,
    status: SourceStatus,
    item_count: int = 0,
    status_code: int | None = None,
    error: str | None = None,
) -> SourceDiagnostic:
    diagnostic = SourceDiagnostic(
        source=source,
        status=status,
        item_count=item_count,
        duration_ms=elapsed_ms(started),
        status_code=status_code,
        error=error,
    )
    metrics.increment("scout.source.status", tags={"source": source, "status": status.value})
    if status in (SourceStatus.ERROR, SourceStatus.BLOCKED):
        logger.warning(
            "scout.source.failed",
            extra={"source": source, "status": status.value, "status_code": status_code, "error": error},
        )
    return diagnostic


def diagnostic_for_count(source: str, started: float, item_count: int) -> SourceDiagnostic:
    status = SourceStatus.SUCCESS if item_count > 0 else SourceStatus.EMPTY
    return make_diagnostic(source, started, status=status, item_count=item_count)


def diagnostic_for_error(source: str, started: float, exc: SourceFetchError) -> SourceDiagnostic:
    return make_diagnostic(
        source,
        started,
        status=exc.status,
        status_code=exc.status_code,
        error=str(exc),
    )


def summary_diagnostic(
    source: str,
    started: float,
    *,
    item_count: int,
    failures: int,
    successes: int,
    total: int,
    unit: str = "feeds",
) -> SourceDiagnostic:
    """Roll-up for multi-request sources: success with leads, else blocked when mostly failing."""
    if item_count > 0:
        status = SourceStatus.SUCCESS
    elif failures > successes:
        status = SourceStatus.BLOCKED
    else:
        status = SourceStatus.EMPTY
    error = f"{failures}/{total} {unit} failed" if failures else None
    return make_diagnostic(source, started, status=status, item_count=item_count, error=error)


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)
