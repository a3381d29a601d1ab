"""Collectible marketplaces: Discogs releases and StockX prices via kicks.dev."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote_plus

import httpx

from pipelines.scout.leads import CollectibleLead, SourceResult
from pipelines.scout.sources.base import (
    SleepFn,
    SourceFetchError,
    default_sleep,
    diagnostic_for_error,
    fetch_json,
    summary_diagnostic,
)

DISCOGS_API = "https://api.discogs.com"
KICKS_PRODUCTS_URL = "https://api.kicks.dev/v1/products"
DISCOGS_DELAY_SECONDS = 1.1  # 60 requests/minute unauthenticated
KICKS_DELAY_SECONDS = 0.5

DISCOGS_SEARCH_TERMS: tuple[str, ...] = (
    "miles davis kind of blue vinyl",
    "led zeppelin vinyl first pressing",
    "pink floyd dark side vinyl",
    "radiohead ok computer vinyl",
    "beatles abbey road vinyl",
    "nirvana nevermind vinyl",
    "fleetwood mac rumours vinyl",
    "kendrick lamar vinyl",
    "tyler the creator vinyl",
    "frank ocean vinyl",
    "daft punk random access vinyl",
    "kanye west vinyl",
)

SNEAKER_SEARCH_TERMS: tuple[str, ...] = (
    "jordan 1 retro high",
    "jordan 4 retro",
    "jordan 11 retro",
    "yeezy boost 350",
    "yeezy slide",
    "nike dunk low",
    "nike sb dunk",
    "new balance 550",
    "new balance 2002r",
    "adidas samba",
    "asics gel kayano",
)


def _to_cents(value: Any) -> int | None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return round(amount * 100) if amount > 0 else None


def _whole_dollars(cents: int | None) -> str:
    return f"${cents / 100:.0f}" if cents else "$?"


async def _discogs_lowest_price(
    http: httpx.AsyncClient, release_id: Any, *, headers: dict[str, str]
) -> int | None:
    try:
        stats = await fetch_json(
            http, f"{DISCOGS_API}/marketplace/stats/{release_id}", timeout=5.0, headers=headers
        )
    except SourceFetchError:
        return None
    lowest = stats.get("lowest_price") if isinstance(stats, dict) else None
    return _to_cents(lowest.get("value")) if isinstance(lowest, dict) else None


def _discogs_lead(release: dict[str, Any], term: str, lowest: int | None) -> CollectibleLead:
    title = release.get("title") or term
    formats = ", ".join(release.get("format") or []) or "Vinyl"
    snippet = f"{title} - {formats} - {release.get('country') or ''} {release.get('year') or ''}"
    return CollectibleLead(
        title=title,
        url=f"https://www.discogs.com{release.get('uri') or ''}",
        snippet=snippet[:500],
        source="Discogs",
        price_found=lowest,
        category="vinyl",
        product_id=str(release.get("id")),
        market_avg=lowest,
    )


async def fetch_discogs_listings(
    http: httpx.AsyncClient,
    *,
    terms: Sequence[str] = DISCOGS_SEARCH_TERMS,
    user_agent: str = "Airbitrage/1.0",
    timeout: float = 8.0,
    sleep: SleepFn = default_sleep,
) -> SourceResult[CollectibleLead]:
    """Search releases, then price the top three of each via marketplace stats."""
    started = time.perf_counter()
    headers = {"User-Agent": user_agent, "Accept": "application/json"}
    result: SourceResult[CollectibleLead] = SourceResult()
    searched = list(terms[:10])
    failures = 0

    for term in searched:
        term_started = time.perf_counter()
        try:
            payload = await fetch_json(
                http,
                f"{DISCOGS_API}/database/search",
                timeout=timeout,
                headers=headers,
                params={"q": term, "type": "release", "per_page": 5},
            )
        except SourceFetchError as exc:
            failures += 1
            result.diagnostics.append(diagnostic_for_error("Discogs", term_started, exc))
        else:
            releases = payload.get("results") if isinstance(payload, dict) else None
            for release in (releases or [])[:3]:
                if not isinstance(release, dict):
                    continue
                lowest = await _discogs_lowest_price(http, release.get("id"), headers=headers)
                result.leads.append(_discogs_lead(release, term, lowest))
        await sleep(DISCOGS_DELAY_SECONDS)

    result.diagnostics.append(
        summary_diagnostic(
            "Discogs (summary)",
            started,
            item_count=len(result.leads),
            failures=failures,
            successes=len(searched) - failures,
            total=len(searched),
            unit="searches",
        )
    )
    return result


def _sneaker_lead(product: dict[str, Any], term: str) -> CollectibleLead:
    retail = _to_cents(product.get("retailPrice"))
    last_sale = _to_cents(product.get("lastSale"))
    lowest_ask = _to_cents(product.get("lowestAsk"))
    name = product.get("name") or product.get("title") or term
    slug = product.get("slug") or product.get("urlKey") or ""
    url = f"https://stockx.com/{slug}" if slug else f"https://stockx.com/search?s={quote_plus(term)}"
    snippet = (
        f"{product.get('name') or term} - Retail: {_whole_dollars(retail)}, "
        f"Last Sale: {_whole_dollars(last_sale)}, Lowest Ask: {_whole_dollars(lowest_ask)}"
    )
    return CollectibleLead(
        title=name,
        url=url,
        snippet=snippet,
        source="StockX",
        price_found=retail or lowest_ask,
        category="sneakers",
        product_id=slug,
        market_avg=last_sale or lowest_ask,
    )


async def fetch_sneaker_prices(
    http: httpx.AsyncClient,
    *,
    terms: Sequence[str] = SNEAKER_SEARCH_TERMS,
    timeout: float = 8.0,
    sleep: SleepFn = default_sleep,
) -> SourceResult[CollectibleLead]:
    """Retail (or lowest ask) is the buy side; last sale (or lowest ask) is the market."""
    started = time.perf_counter()
    result: SourceResult[CollectibleLead] = SourceResult()
    searched = list(terms[:8])
    failures = 0

    for term in searched:
        term_started = time.perf_counter()
        try:
            payload = await fetch_json(
                http,
                KICKS_PRODUCTS_URL,
                timeout=timeout,
                headers={"Accept": "application/json"},
                params={"search": term, "limit": 5},
            )
        except SourceFetchError as exc:
            failures += 1
            result.diagnostics.append(diagnostic_for_error("kicks.dev", term_started, exc))
        else:
            products = (payload.get("products") or payload.get("data")) if isinstance(payload, dict) else None
            for product in (products or [])[:3]:
                if isinstance(product, dict):
                    result.leads.append(_sneaker_lead(product, term))
        await sleep(KICKS_DELAY_SECONDS)

    result.diagnostics.append(
        summary_diagnostic(
            "kicks.dev (summary)",
            started,
            item_count=len(result.leads),
            failures=failures,
            successes=len(searched) - failures,
            total=len(searched),
            unit="searches",
        )
    )
    return result


async def fetch_collectibles(
    http: httpx.AsyncClient,
    *,
    user_agent: str = "Airbitrage/1.0",
    timeout: float = 8.0,
    sleep: SleepFn = default_sleep,
) -> tuple[SourceResult[CollectibleLead], SourceResult[CollectibleLead]]:
    """Discogs and kicks.dev have independent rate limits, so they run side by side."""
    discogs, sneakers = await asyncio.gather(
        fetch_discogs_listings(http, user_agent=user_agent, timeout=timeout, sleep=sleep),
        fetch_sneaker_prices(http, timeout=timeout, sleep=sleep),
    )
    return discogs, sneakers
