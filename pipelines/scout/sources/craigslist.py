"""Craigslist search RSS across cities, categories and high-resale brand queries."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx

from pipelines.scout.extraction import extract_price
from pipelines.scout.leads import ScoutLead, SourceDiagnostic, SourceResult
from pipelines.scout.sources.base import (
    SleepFn,
    SourceFetchError,
    default_sleep,
    diagnostic_for_error,
    fetch_text,
    summary_diagnostic,
)
from pipelines.scout.sources.rss import RSS_ACCEPT, entry_summary, entry_text, parse_entries

CRAIGSLIST_USER_AGENT = "Mozilla/5.0 (compatible; research)"
MAX_FEEDS = 40
BATCH_SIZE = 5
BATCH_DELAY_SECONDS = 0.5
MAX_CITIES = 5
DEFAULT_BRAND_COUNT = 15

CRAIGSLIST_CATEGORIES: dict[str, str] = {
    "electronics": "ela",
    "furniture": "fua",
    "bikes": "bia",
    "tools": "tla",
    "musical": "msa",
    "books": "bka",
    "appliances": "ppa",
    "sports": "sga",
    "free": "zip",
    "all": "sss",
}

DEFAULT_CITIES: tuple[str, ...] = (
    "sfbay", "losangeles", "newyork", "chicago", "seattle",
    "portland", "austin", "denver", "atlanta", "boston",
    "dallas", "houston", "sandiego", "miami", "phoenix",
    "minneapolis", "detroit", "philadelphia", "washingtondc", "nashville",
)

HIGH_RESALE_BRANDS: tuple[str, ...] = (
    # electronics
    "macbook", "iphone", "ipad", "sonos", "bose", "dyson", "vitamix",
    "kitchenaid", "sony", "canon", "nikon", "nintendo switch", "ps5",
    # furniture
    "herman miller", "steelcase", "west elm", "restoration hardware",
    "pottery barn", "room and board", "eames",
    # tools
    "milwaukee", "dewalt", "makita", "festool", "snap-on",
    # audio
    "marantz", "mcintosh", "klipsch", "technics", "sennheiser",
    # bikes
    "trek", "specialized", "cannondale", "santa cruz", "cervelo",
    # musical
    "fender", "gibson", "taylor", "martin", "roland",
)


@dataclass(frozen=True)
class CraigslistQuery:
    """Which cities, categories and search terms to cross. Empty lists mean defaults."""

    cities: Sequence[str] = ()
    categories: Sequence[str] = ()
    queries: Sequence[str] = ()
    max_items_per_feed: int = 10


@dataclass(frozen=True)
class CraigslistFeed:
    url: str
    city: str
    query: str


@dataclass
class _FeedTally:
    successes: int = 0
    failures: int = 0
    diagnostics: list[SourceDiagnostic] = field(default_factory=list)


def build_feeds(config: CraigslistQuery) -> list[CraigslistFeed]:
    cities = list(config.cities) or list(DEFAULT_CITIES[:MAX_CITIES])
    categories = [CRAIGSLIST_CATEGORIES.get(name, "sss") for name in config.categories] or ["sss"]
    queries = list(config.queries) or list(HIGH_RESALE_BRANDS[:DEFAULT_BRAND_COUNT])

    feeds: list[CraigslistFeed] = []
    for query in queries:
        for city in cities[:MAX_CITIES]:
            for category in categories:
                url = (
                    f"https://{city}.craigslist.org/search/{category}"
                    f"?query={quote(query, safe='')}&format=rss&sort=date"
                )
                feeds.append(CraigslistFeed(url=url, city=city, query=query))
    return feeds[:MAX_FEEDS]


def extract_item_price(title: str, description: str, dc_format: str | None = None) -> int | None:
    """Craigslist puts the asking price at the end of the title; description and dc:format are fallbacks."""
    price = extract_price(title) or extract_price(description)
    if price:
        return price
    if dc_format:
        return extract_price(dc_format)
    return None


def parse_craigslist_feed(text: str, *, city: str, query: str, max_items: int = 10) -> list[ScoutLead]:
    leads: list[ScoutLead] = []
    for entry in parse_entries(text):
        if len(leads) >= max_items:
            break
        title = entry_text(entry.get("title"))
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        description = entry_text(entry_summary(entry))
        leads.append(
            ScoutLead(
                title=title,
                url=link,
                snippet=description[:500],
                source=f"craigslist-{city}",
                price_found=extract_item_price(title, description, entry.get("dc_format")),
                category=query,
            )
        )
    return leads


async def _fetch_one(
    http: httpx.AsyncClient,
    feed: CraigslistFeed,
    *,
    timeout: float,
    max_items: int,
    tally: _FeedTally,
) -> list[ScoutLead]:
    started = time.perf_counter()
    try:
        text = await fetch_text(
            http,
            feed.url,
            timeout=timeout,
            headers={"User-Agent": CRAIGSLIST_USER_AGENT, "Accept": RSS_ACCEPT},
        )
    except SourceFetchError as exc:
        tally.failures += 1
        tally.diagnostics.append(diagnostic_for_error(f"Craigslist {feed.city}", started, exc))
        return []
    tally.successes += 1
    return parse_craigslist_feed(text, city=feed.city, query=feed.query, max_items=max_items)


async def fetch_craigslist(
    http: httpx.AsyncClient,
    config: CraigslistQuery,
    *,
    timeout: float = 8.0,
    sleep: SleepFn = default_sleep,
) -> SourceResult[ScoutLead]:
    """Fetch feeds in small concurrent batches, then de-duplicate listings by URL."""
    started = time.perf_counter()
    feeds = build_feeds(config)
    tally = _FeedTally()
    collected: list[ScoutLead] = []

    for offset in range(0, len(feeds), BATCH_SIZE):
        batch = feeds[offset : offset + BATCH_SIZE]
        batches = await asyncio.gather(
            *(
                _fetch_one(http, feed, timeout=timeout, max_items=config.max_items_per_feed, tally=tally)
                for feed in batch
            )
        )
        for leads in batches:
            collected.extend(leads)
        if offset + BATCH_SIZE < len(feeds):
            await sleep(BATCH_DELAY_SECONDS)

    tally.diagnostics.append(
        summary_diagnostic(
            "Craigslist RSS (summary)",
            started,
            item_count=len(collected),
            failures=tally.failures,
            successes=tally.successes,
            total=len(feeds),
        )
    )

    seen: set[str] = set()
    unique: list[ScoutLead] = []
    for lead in collected:
        if lead.url in seen:
            continue
        seen.add(lead.url)
        unique.append(lead)
    return SourceResult(leads=unique, diagnostics=tally.diagnostics)
