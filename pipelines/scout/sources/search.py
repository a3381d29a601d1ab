"""Web-search backed sources: generic batch search, eBay listings, government auctions."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Sequence

from airbitrage.clients.tavily import TavilyError
from pipelines.scout.extraction import UrlQuality, extract_domain, extract_price, score_url_quality
from pipelines.scout.leads import ScoutLead, SourceResult, SourceStatus
from pipelines.scout.sources.base import (
    SleepFn,
    WebSearchClient,
    default_sleep,
    make_diagnostic,
    summary_diagnostic,
)

logger = logging.getLogger("pipelines.scout.sources.search")

QUERY_DELAY_SECONDS = 0.3
SNIPPET_LIMIT = 500

CRAIGSLIST_FALLBACK_QUERIES: tuple[str, ...] = (
    "site:craigslist.org macbook for sale",
    "site:craigslist.org iphone for sale",
    "site:craigslist.org herman miller for sale",
    "site:craigslist.org dyson for sale",
)

GOV_AUCTION_QUERIES: tuple[str, ...] = (
    "site:govdeals.com electronics auction current",
    "site:govdeals.com tools equipment lot auction",
    "site:govdeals.com vehicles surplus auction",
    "site:publicsurplus.com auction electronics lot",
    "site:gsaauctions.gov surplus equipment",
)

_GOV_SOURCES: tuple[tuple[str, str], ...] = (
    ("govdeals", "GovDeals"),
    ("publicsurplus", "PublicSurplus"),
    ("gsaauctions", "GSA Auctions"),
)


def _missing_key_result(source: str) -> SourceResult[ScoutLead]:
    diagnostic = make_diagnostic(
        source,
        time.perf_counter(),
        status=SourceStatus.ERROR,
        error="No Tavily API key provided",
    )
    return SourceResult(diagnostics=[diagnostic])


def _lead_from_result(
    result: dict,
    *,
    category: str,
    source: str | None = None,
    keep_skip_urls: bool = False,
) -> ScoutLead | None:
    url = str(result.get("url") or "")
    if not keep_skip_urls and score_url_quality(url) is UrlQuality.SKIP:
        return None
    title = str(result.get("title") or "")
    snippet = str(result.get("content") or "")[:SNIPPET_LIMIT]
    return ScoutLead(
        title=title,
        url=url,
        snippet=snippet,
        source=source or extract_domain(url),
        price_found=extract_price(f"{title} {snippet}"),
        category=category,
    )


async def tavily_batch_search(
    client: WebSearchClient | None,
    queries: Sequence[str],
    *,
    max_results: int = 5,
    source_label: str = "Tavily Search",
    sleep: SleepFn = default_sleep,
) -> SourceResult[ScoutLead]:
    """Run ``queries`` sequentially, dropping search/aggregator URLs from the results.

    Failed queries are skipped; the run only sees them through the summary diagnostic.
    """
    if client is None:
        return _missing_key_result(source_label)

    started = time.perf_counter()
    result: SourceResult[ScoutLead] = SourceResult()
    failures = 0
    for index, query in enumerate(queries):
        try:
            response = await client.search(query=query, max_results=max_results)
        except TavilyError as exc:
            failures += 1
            logger.info("scout.search.query_failed", extra={"query": query, "code": exc.code})
        else:
            for raw in response.results:
                lead = _lead_from_result(raw, category=query)
                if lead is not None:
                    result.leads.append(lead)
        if index < len(queries) - 1:
            await sleep(QUERY_DELAY_SECONDS)

    result.diagnostics.append(
        summary_diagnostic(
            f"{source_label} (summary)",
            started,
            item_count=len(result.leads),
            failures=failures,
            successes=len(queries) - failures,
            total=len(queries),
            unit="queries",
        )
    )
    return result


def ebay_search_terms(search_queries: Sequence[str], limit: int = 10) -> list[str]:
    """Derive plain product terms from an agent's queries, skipping ones already scoped to eBay."""
    terms: list[str] = []
    for query in search_queries:
        if "site:ebay.com" in query:
            continue
        term = re.sub(r"site:\S+", "", query).strip()
        if term:
            terms.append(term)
        if len(terms) >= limit:
            break
    return terms


async def search_ebay_listings(
    client: WebSearchClient | None,
    terms: Sequence[str],
    *,
    sleep: SleepFn = default_sleep,
) -> SourceResult[ScoutLead]:
    """eBay has no keyless API; find live auctions and sold comps through site-scoped search."""
    listing_queries = [f"site:ebay.com {term} auction ending soon" for term in terms]
    sold_queries = [f'site:ebay.com "{term}" sold price' for term in terms]

    listings = await tavily_batch_search(
        client, listing_queries, max_results=5, source_label="eBay Listings", sleep=sleep
    )
    sold = await tavily_batch_search(
        client, sold_queries, max_results=3, source_label="eBay Sold", sleep=sleep
    )
    leads = [
        ScoutLead(
            title=lead.title,
            url=lead.url,
            snippet=lead.snippet,
            source="eBay",
            price_found=lead.price_found,
            category=lead.category,
        )
        for lead in [*listings.leads, *sold.leads]
    ]
    return SourceResult(leads=leads, diagnostics=[*listings.diagnostics, *sold.diagnostics])


def _gov_source(url: str) -> str:
    for marker, label in _GOV_SOURCES:
        if marker in url:
            return label
    return "Gov Auction"


async def fetch_gov_auctions(
    client: WebSearchClient | None,
    *,
    sleep: SleepFn = default_sleep,
) -> SourceResult[ScoutLead]:
    if client is None:
        return _missing_key_result("Gov Auctions")

    started = time.perf_counter()
    result: SourceResult[ScoutLead] = SourceResult()
    failures = 0
    for query in GOV_AUCTION_QUERIES:
        query_started = time.perf_counter()
        try:
            response = await client.search(query=query, max_results=5)
        except TavilyError as exc:
            failures += 1
            result.diagnostics.append(
                make_diagnostic(
                    f"Gov Auctions ({query.split(' ')[0]})",
                    query_started,
                    status=SourceStatus.ERROR,
                    error=str(exc),
                )
            )
        else:
            for raw in response.results:
                url = str(raw.get("url") or "")
                lead = _lead_from_result(
                    raw,
                    category="government-auction",
                    source=_gov_source(url),
                    keep_skip_urls=True,
                )
                if lead is not None:
                    result.leads.append(lead)
        await sleep(QUERY_DELAY_SECONDS)

    result.diagnostics.append(
        summary_diagnostic(
            "Gov Auctions (summary)",
            started,
            item_count=len(result.leads),
            failures=failures,
            successes=len(GOV_AUCTION_QUERIES) - failures,
            total=len(GOV_AUCTION_QUERIES),
            unit="queries",
        )
    )
    return result
