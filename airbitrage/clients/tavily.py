"""Async Tavily search client used for sold-price lookups and marketplace discovery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

TAVILY_BASE_URL = "https://api.tavily.com"


class TavilyError(RuntimeError):
    """Base error for Tavily client failures.

    ``throttled`` marks errors that signal provider pressure; callers that make
    many lookups in a row stop early once several of these arrive back to back.
    """

    throttled = False

    def __init__(self, message: str, code: str = "TAVILY_ERROR") -> None:
        super().__init__(message)
        self.code = code


class TavilyRateLimitError(TavilyError):
    """HTTP 429, or 433 when the plan quota is spent."""

    throttled = True

    def __init__(self, message: str = "Rate limited by Tavily") -> None:
        super().__init__(message, code="TAVILY_429")


class TavilyTimeoutError(TavilyError):
    def __init__(self, message: str = "Tavily request timed out") -> None:
        super().__init__(message, code="TAVILY_TIMEOUT")


class TavilyUpstreamError(TavilyError):
    throttled = True

    def __init__(self, message: str = "Tavily upstream failure") -> None:
        super().__init__(message, code="TAVILY_5XX")


class TavilySchemaError(TavilyError):
    def __init__(self, message: str = "Unexpected Tavily response schema") -> None:
        super().__init__(message, code="TAVILY_SCHEMA_ERR")


@dataclass(frozen=True)
class TavilySearchResponse:
    results: list[dict[str, Any]] = field(default_factory=list)
    answer: str | None = None


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    if status in (429, 433):
        raise TavilyRateLimitError(f"Tavily returned {status}")
    if status == 408:
        raise TavilyTimeoutError()
    if status >= 500:
        raise TavilyUpstreamError(f"Tavily returned {status}")
    detail = response.text[:200]
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("message") or body.get("detail") or detail
    raise TavilyError(f"Tavily request failed: {status} - {detail}")


def _parse_search_body(response: httpx.Response) -> TavilySearchResponse:
    try:
        data = response.json()
    except ValueError as exc:
        raise TavilySchemaError("Tavily returned a non-JSON body.") from exc
    if not isinstance(data, dict) or not isinstance(data.get("results", []), list):
        raise TavilySchemaError()
    answer = data.get("answer")
    # Non-object entries are dropped rather than failing the whole lookup.
    return TavilySearchResponse(
        results=[item for item in data.get("results", []) if isinstance(item, dict)],
        answer=answer if isinstance(answer, str) else None,
    )


class TavilyClient:
    """Basic-depth Tavily search over a caller-owned ``httpx.AsyncClient``."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = TAVILY_BASE_URL,
        timeout: float = 8.0,
        http_client: httpx.AsyncClient,
    ) -> None:
        if not api_key:
            raise ValueError("A Tavily API key is required.")
        self._api_key = api_key
        self._search_url = f"{base_url.rstrip('/')}/search"
        self._timeout = timeout
        self._http = http_client

    async def search(
        self,
        *,
        query: str,
        max_results: int = 5,
        include_answer: bool = False,
    ) -> TavilySearchResponse:
        if max_results <= 0:
            raise ValueError("max_results must be a positive integer.")
        try:
            response = await self._http.post(
                self._search_url,
                json={
                    "query": query,
                    "search_depth": "basic",
                    "max_results": max_results,
                    "include_answer": include_answer,
                    "include_raw_content": False,
                },
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TavilyTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise TavilyError(f"Could not reach Tavily: {exc}") from exc
        _raise_for_status(response)
        return _parse_search_body(response)
