"""Deal-feed source: RSS and Atom parsed with feedparser."""

from __future__ import annotations

import asyncio
import html
import re
import time
from dataclasses import dataclass

import feedparser
import httpx

from pipelines.scout.leads import DealFeedItem, SourceDiagnostic, SourceResult
from pipelines.scout.sources.base import (
    SourceFetchError,
    diagnostic_for_count,
    diagnostic_for_error,
    fetch_text,
)

RSS_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"
MAX_ITEMS_PER_FEED = 15
DESCRIPTION_LIMIT = 500

_HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class DealFeed:
    url: str
    source: str


DEAL_FEEDS: tuple[DealFeed, ...] = (
    DealFeed("https://www.reddit.com/r/deals/.rss", "r/deals"),
    DealFeed("https://www.reddit.com/r/flipping/.rss", "r/flipping"),
    DealFeed("https://www.reddit.com/r/buildapcsales/.rss", "r/buildapcsales"),
    DealFeed(
        "https://slickdeals.net/newsearch.php?mode=frontpage&searcharea=deals&searchin=first&rss=1",
        "Slickdeals",
    ),
    DealFeed("https://www.dealnews.com/rss/", "DealNews"),
)


def strip_html(markup: str) -> str:
    return _WHITESPACE_PATTERN.sub(" ", _HTML_TAG_PATTERN.sub(" ", markup)).strip()


def entry_text(value: str | None) -> str:
    """Plain text from a feedparser field; HTML-typed fields keep their markup and entities."""
    return html.unescape(strip_html(value or ""))


def entry_summary(entry) -> str:
    """Summary or description, falling back to the first Atom ``<content>`` block."""
    summary = entry.get("summary")
    if summary:
        return summary
    for content in entry.get("content") or ():
        if content.get("value"):
            return content["value"]
    return ""


def parse_entries(text: str) -> list:
    return list(feedparser.parse(text).entries)


def parse_deal_feed(text: str, source: str, max_items: int = MAX_ITEMS_PER_FEED) -> list[DealFeedItem]:
    items: list[DealFeedItem] = []
    for entry in parse_entries(text):
        if len(items) >= max_items:
            break
        title = entry_text(entry.get("title"))
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        items.append(
            DealFeedItem(
                title=title,
                url=link,
                description=entry_text(entry_summary(entry))[:DESCRIPTION_LIMIT],
                source=source,
                pub_date=entry.get("published") or entry.get("updated") or "",
            )
        )
    return items


async def _fetch_feed(
    http: httpx.AsyncClient,
    feed: DealFeed,
    *,
    timeout: float,
    user_agent: str,
) -> tuple[list[DealFeedItem], SourceDiagnostic]:
    started = time.perf_counter()
    try:
        text = await fetch_text(
            http,
            feed.url,
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": RSS_ACCEPT},
        )
    except SourceFetchError as exc:
        return [], diagnostic_for_error(feed.source, started, exc)
    items = parse_deal_feed(text, feed.source)
    return items, diagnostic_for_count(feed.source, started, len(items))


async def fetch_deal_feeds(
    http: httpx.AsyncClient,
    *,
    timeout: float = 8.0,
    user_agent: str = "Airbitrage/1.0 (arbitrage research tool)",
    feeds: tuple[DealFeed, ...] = DEAL_FEEDS,
) -> SourceResult[DealFeedItem]:
    """Fetch every deal feed concurrently; each feed fails on its own."""
    outcomes = await asyncio.gather(
        *(_fetch_feed(http, feed, timeout=timeout, user_agent=user_agent) for feed in feeds)
    )
    result: SourceResult[DealFeedItem] = SourceResult()
    for items, diagnostic in outcomes:
        result.leads.extend(items)
        result.diagnostics.append(diagnostic)
    return result
