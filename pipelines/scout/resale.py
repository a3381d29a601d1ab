"""Resale evidence lookups built on web search.

Prices are only trusted when they come from marketplace item pages. Generic pages
(blogs, price guides) may add low-weight support to listing evidence but can never
establish a price on their own.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from airbitrage.clients.tavily import TavilyError
from airbitrage.models.opportunity import LeadConfidence, SellPriceType
from airbitrage.observability.metrics import metrics
from pipelines.scout.extraction import (
    UrlQuality,
    clean_title_for_search,
    ebay_sold_search_url,
    extract_all_prices,
    format_cents,
    is_listing_url,
    score_url_quality,
)
from pipelines.scout.filter import PricePoint, weighted_median
from pipelines.scout.leads import BookLead, QualifiedLead, ResalePriceInfo, ScoutLead
from pipelines.scout.sources.base import SleepFn, WebSearchClient, default_sleep

logger = logging.getLogger("pipelines.scout.resale")

MAX_RESALE_LOOKUPS = 25
MAX_BOOK_LOOKUPS = 15
MAX_CONSECUTIVE_ERRORS = 3
LOOKUP_DELAY_SECONDS = 0.5
LISTING_WEIGHT = 3.0
GENERIC_WEIGHT = 1.0

BOOK_BUY_PRICE_CENTS = 200
BOOK_MIN_PRICE_CENTS = 500
BOOK_MAX_PRICE_CENTS = 50_000

_HIGH_TRUST_SOURCES = frozenset({"Discogs", "StockX", "eBay"})
_PLATFORMS: tuple[tuple[str, str], ...] = (
    ("ebay", "eBay"),
    ("amazon", "Amazon"),
    ("stockx", "StockX"),
    ("mercari", "Mercari"),
)


@dataclass
class ResaleEvidence:
    """Prices gathered for one product, split by page quality."""

    listing_prices: list[int] = field(default_factory=list)
    generic_prices: list[int] = field(default_factory=list)
    best_url: str | None = None

    @property
    def listing_data_points(self) -> int:
        return len(self.listing_prices)

    @property
    def data_points(self) -> int:
        if not self.listing_prices:
            return 0
        return len(self.listing_prices) + len(self.generic_prices)

    def points(self) -> list[PricePoint]:
        if not self.listing_prices:
            return []
        return [
            *(PricePoint(value=price, weight=LISTING_WEIGHT) for price in self.listing_prices),
            *(PricePoint(value=price, weight=GENERIC_WEIGHT) for price in self.generic_prices),
        ]

    def estimate(self) -> int:
        return weighted_median(self.points())


def platform_for_url(url: str | None) -> str:
    lower = (url or "").lower()
    for marker, label in _PLATFORMS:
        if marker in lower:
            return label
    return "Marketplace"


def is_plausible_resale_price(price: int, buy_price: int) -> bool:
    """Drop noise far from the buy price and prices that are just the buy price echoed back."""
    if price < buy_price * 0.1 or price > buy_price * 20:
        return False
    return abs(price - buy_price) >= buy_price * 0.05


def collect_evidence(results: Iterable[dict[str, Any]], *, buy_price: int | None = None) -> ResaleEvidence:
    """Split search results into listing and generic price evidence.

    When ``buy_price`` is given, prices are anchored against it. The first listing
    page that contributes a price becomes the evidence URL.
    """
    evidence = ResaleEvidence()
    for result in results:
        url = str(result.get("url") or "")
        quality = score_url_quality(url)
        if quality is UrlQuality.SKIP:
            continue
        prices = extract_all_prices(f"{result.get('title') or ''} {result.get('content') or ''}")
        if buy_price:
            prices = [price for price in prices if is_plausible_resale_price(price, buy_price)]
        if not prices:
            continue
        if quality is UrlQuality.LISTING:
            evidence.listing_prices.extend(prices)
            if evidence.best_url is None:
                evidence.best_url = url
        else:
            evidence.generic_prices.extend(prices)
    return evidence


def resale_info_from_evidence(evidence: ResaleEvidence, title: str) -> ResalePriceInfo:
    if not evidence.listing_prices:
        return ResalePriceInfo(
            estimated_price=0,
            platform="eBay",
            url=ebay_sold_search_url(title),
            data_points=0,
            listing_data_points=0,
            price_type=SellPriceType.RESEARCH_NEEDED,
        )
    price_type = SellPriceType.VERIFIED if evidence.listing_data_points >= 2 else SellPriceType.ESTIMATED
    return ResalePriceInfo(
        estimated_price=evidence.estimate(),
        platform=platform_for_url(evidence.best_url),
        url=evidence.best_url or ebay_sold_search_url(title),
        data_points=evidence.data_points,
        listing_data_points=evidence.listing_data_points,
        price_type=price_type,
    )


def _lookup_priority(lead: ScoutLead) -> int:
    if "craigslist" in lead.source.lower() or is_listing_url(lead.url):
        return 3
    if lead.source in _HIGH_TRUST_SOURCES:
        return 2
    return 1


async def batch_resale_lookup(
    client: WebSearchClient | None,
    leads: Sequence[ScoutLead],
    *,
    max_lookups: int = MAX_RESALE_LOOKUPS,
    sleep: SleepFn = default_sleep,
) -> dict[str, ResalePriceInfo]:
    """Look up resale evidence for priced leads, direct listings first.

    Results are keyed by both lead URL and lead title. Lookups stop early after
    three consecutive rate-limit or upstream errors.
    """
    resale: dict[str, ResalePriceInfo] = {}
    if client is None:
        logger.warning("scout.resale.skipped", extra={"reason": "no_search_client"})
        return resale

    started = time.perf_counter()
    candidates = sorted((lead for lead in leads if lead.has_price), key=_lookup_priority, reverse=True)
    consecutive_errors = 0
    lookups = 0

    for lead in candidates[:max_lookups]:
        if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
            logger.warning(
                "scout.resale.early_exit",
                extra={"consecutive_errors": consecutive_errors, "lookups": lookups},
            )
            break
        clean = clean_title_for_search(lead.title)
        if len(clean) < 5:
            continue

        lookups += 1
        try:
            response = await client.search(
                query=f'"{clean}" sold price ebay amazon', max_results=5, include_answer=True
            )
        except TavilyError as exc:
            if exc.throttled:
                consecutive_errors += 1
            logger.info("scout.resale.lookup_failed", extra={"title": clean, "code": exc.code})
        else:
            consecutive_errors = 0
            evidence = collect_evidence(response.results, buy_price=lead.price_found)
            info = resale_info_from_evidence(evidence, lead.title)
            resale[lead.url] = info
            resale[lead.title] = info
        await sleep(LOOKUP_DELAY_SECONDS)

    metrics.timing("scout.resale.duration_ms", (time.perf_counter() - started) * 1000)
    logger.info(
        "scout.resale.completed",
        extra={"candidates": len(candidates), "lookups": lookups, "priced": len(resale) // 2},
    )
    return resale


def _book_query(book: BookLead) -> str | None:
    if book.isbn:
        return f'"{book.isbn}" price amazon ebay used book'
    clean = clean_title_for_search(book.title)
    if len(clean) < 5:
        return None
    return f'"{clean}" used book price amazon ebay'


def _book_prices(results: Sequence[dict[str, Any]], answer: str | None) -> list[int]:
    texts = [f"{result.get('title') or ''} {result.get('content') or ''}" for result in results]
    if answer:
        texts.append(answer)
    return [
        price
        for text in texts
        for price in extract_all_prices(text)
        if BOOK_MIN_PRICE_CENTS <= price <= BOOK_MAX_PRICE_CENTS
    ]


def _book_best_result(results: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
    for result in results:
        if is_listing_url(str(result.get("url") or "")):
            return result
    for result in results:
        url = str(result.get("url") or "").lower()
        if "ebay" in url or "amazon" in url:
            return result
    return results[0] if results else None


def _book_confidence(book: BookLead, price_count: int) -> LeadConfidence:
    if book.isbn and price_count >= 3:
        return LeadConfidence.HIGH
    if price_count >= 2:
        return LeadConfidence.MEDIUM
    return LeadConfidence.LOW


async def batch_book_resale_lookup(
    client: WebSearchClient | None,
    books: Sequence[BookLead],
    *,
    min_profit_cents: int = 800,
    max_lookups: int = MAX_BOOK_LOOKUPS,
    sleep: SleepFn = default_sleep,
) -> list[QualifiedLead]:
    """Price books by ISBN (or cleaned title) against an assumed $2 thrift-store buy price."""
    if client is None:
        logger.warning("scout.books.skipped", extra={"reason": "no_search_client"})
        return []

    qualified: list[QualifiedLead] = []
    for book in books[:max_lookups]:
        query = _book_query(book)
        if query is None:
            continue
        try:
            response = await client.search(query=query, max_results=5, include_answer=True)
        except TavilyError as exc:
            logger.info("scout.books.lookup_failed", extra={"title": book.title, "code": exc.code})
            await sleep(LOOKUP_DELAY_SECONDS)
            continue

        prices = sorted(_book_prices(response.results, response.answer))
        if prices:
            sell_estimate = prices[len(prices) // 2]
            spread = sell_estimate - BOOK_BUY_PRICE_CENTS
            if spread >= min_profit_cents:
                best = _book_best_result(response.results)
                best_url = str(best.get("url") or "") if best else ""
                platform = platform_for_url(best_url) if best_url else "Marketplace"
                if platform not in ("eBay", "Amazon"):
                    platform = "Marketplace"
                price_type = (
                    SellPriceType.VERIFIED
                    if best_url and is_listing_url(best_url) and len(prices) >= 2
                    else SellPriceType.ESTIMATED
                )
                qualified.append(
                    QualifiedLead(
                        title=book.title,
                        description=(
                            f"{book.snippet} - Estimated resale: {format_cents(sell_estimate)} on {platform}. "
                            f"Buy at thrift stores/library sales for ~{format_cents(BOOK_BUY_PRICE_CENTS)}."
                        ),
                        buy_price=BOOK_BUY_PRICE_CENTS,
                        buy_source="Thrift/Library Sale",
                        buy_url=book.url,
                        sell_price_estimate=sell_estimate,
                        sell_source=platform,
                        sell_url=best_url or ebay_sold_search_url(book.isbn or book.title),
                        sell_price_type=price_type,
                        estimated_spread=spread,
                        spread_percent=spread / BOOK_BUY_PRICE_CENTS * 100,
                        confidence=_book_confidence(book, len(prices)),
                        category="books",
                        raw=book,
                    )
                )
        await sleep(LOOKUP_DELAY_SECONDS)

    qualified.sort(key=lambda lead: lead.estimated_spread, reverse=True)
    logger.info("scout.books.completed", extra={"books": len(books), "qualified": len(qualified)})
    return qualified


async def search_sold_prices(
    client: WebSearchClient,
    product_name: str,
    *,
    max_results: int = 5,
) -> str:
    """Plain-text sold-price evidence for one product, from listing pages only.

    Used as the snipe engine's tool; search failures are reported in the text
    rather than raised so the model can carry on without the data.
    """
    clean = clean_title_for_search(product_name) or product_name.strip()
    try:
        response = await client.search(
            query=f'"{clean}" sold price ebay', max_results=max_results, include_answer=False
        )
    except TavilyError as exc:
        logger.info("snipe.tool.search_failed", extra={"product": clean, "code": exc.code})
        return f"Search failed for {clean!r}: {exc}"

    lines = [f"Sold-price evidence for {clean!r}:"]
    listing_results = [result for result in response.results if is_listing_url(str(result.get("url") or ""))]
    evidence = collect_evidence(listing_results)
    for result in listing_results:
        prices = extract_all_prices(f"{result.get('title') or ''} {result.get('content') or ''}")
        if not prices:
            continue
        price_list = ", ".join(format_cents(price) for price in prices[:5])
        lines.append(f"- {result.get('title') or 'Listing'} | {result.get('url')} | {price_list}")

    if not evidence.listing_prices:
        lines.append("No listing pages with prices found. Treat the sell price as unverified.")
        lines.append(f"Manual check: {ebay_sold_search_url(clean)}")
        return "\n".join(lines)

    info = resale_info_from_evidence(evidence, clean)
    lines.append(
        f"Median listing price: {format_cents(info.estimated_price)} "
        f"({info.listing_data_points} listing data points, {info.price_type.value})"
    )
    return "\n".join(lines)
