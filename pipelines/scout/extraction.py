"""Money, URL and title helpers shared by every scout source and filter."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Final
from urllib.parse import quote_plus, urlparse

_MAX_DOLLARS: Final[Decimal] = Decimal("1000000")

_DOLLAR_PATTERN = re.compile(r"\$\s?([\d,]+(?:\.\d{2})?)")
_PRICE_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    _DOLLAR_PATTERN,
    re.compile(r"USD\s?([\d,]+(?:\.\d{2})?)", re.IGNORECASE),
    re.compile(r"price[:\s]+\$?([\d,]+(?:\.\d{2})?)", re.IGNORECASE),
)


class UrlQuality(str, Enum):
    """Coarse classification of a URL for resale evidence."""

    LISTING = "listing"
    GENERIC = "generic"
    SKIP = "skip"


# Search results, category indexes and aggregator pages. Checked before listings.
_SKIP_PATTERNS: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern)
    for pattern in (
        r"google\.com/search",
        r"bing\.com/search",
        r"duckduckgo\.com",
        r"/search\?",
        r"/search/",
        r"/category/",
        r"/tag/",
        r"/blog/?$",
        r"/news/?$",
        r"/wiki/",
        r"wikipedia\.org",
        r"youtube\.com",
        r"reddit\.com/r/\w+/?$",
        r"/about/?$",
        r"/contact/?$",
        r"/faq",
    )
)

# Item detail pages on marketplaces.
_LISTING_PATTERNS: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern)
    for pattern in (
        r"ebay\.com/itm/",
        r"ebay\.com/p/",
        r"amazon\.com/dp/",
        r"amazon\.com/gp/product",
        r"amazon\.com/.*/dp/",
        r"craigslist\.org/.*/\d+\.html",
        r"offerup\.com/item/",
        r"facebook\.com/marketplace/item",
        r"stockx\.com/.*[a-z]",
        r"goat\.com/sneakers/",
        r"tcgplayer\.com/product/",
        r"discogs\.com/.*/release/",
        r"ticketmaster\.com/event/",
        r"stubhub\.com/.*-tickets/",
        r"seatgeek\.com/.*/tickets",
        r"target\.com/p/",
        r"walmart\.com/ip/",
        r"bestbuy\.com/.*/\d+\.p",
        r"mercari\.com/item/",
        r"poshmark\.com/listing/",
        r"govdeals\.com/.*itemid=",
        r"publicsurplus\.com/sms/auction/view",
        r"gsaauctions\.gov/.*/auction/",
        r"estatesales\.net/.*/sale/",
        r"hibid\.com/.*/lot/",
        r"maxsold\.com/.*/auction/",
    )
)

_TITLE_SCRUBBERS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\[[^\]]*\]"), ""),
    (re.compile(r"\(\s*\d+%\s*off[^)]*\)", re.IGNORECASE), ""),
    (
        re.compile(
            r"\(\s*(?:was|reg|originally|msrp|retail|regular(?:\s+price)?)\s*\$[\d,.]+\s*\)",
            re.IGNORECASE,
        ),
        "",
    ),
    (re.compile(r"\(\s*\$[\d,.]+\s*(?:off|savings?|discount)\s*\)", re.IGNORECASE), ""),
    (re.compile(r"\$\s?[\d,]+(?:\.\d{2})?"), ""),
    (re.compile(r"\d+%\s*(?:off|discount|savings?)", re.IGNORECASE), ""),
    (re.compile(r"/r/\w+"), ""),
    (re.compile(r"\b(?:via|from|at|@)\s+\w+\.com", re.IGNORECASE), ""),
    (re.compile(r"\bfree\s+shipping\b", re.IGNORECASE), ""),
    (re.compile(r"\(\s*\)"), ""),
    (re.compile(r"\s+"), " "),
)
_SEARCH_TITLE_LIMIT = 80
_SEARCH_TITLE_MIN_CUT = 40


def dollars_to_cents(raw: str) -> int | None:
    """Convert a matched dollar string like ``1,200.50`` to cents within (0, 1e6) dollars."""
    try:
        amount = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    if amount <= 0 or amount >= _MAX_DOLLARS:
        return None
    return int((amount * 100).to_integral_value())


def extract_price(text: str) -> int | None:
    """Return the first price found in ``text`` as cents.

    Patterns are tried in priority order (``$NN.NN``, ``USD NN``, ``price: NN``),
    so a dollar-sign amount anywhere in the text wins over the others.
    """
    if not text:
        return None
    for pattern in _PRICE_PATTERNS:
        for match in pattern.finditer(text):
            cents = dollars_to_cents(match.group(1))
            if cents is not None:
                return cents
    return None


def extract_all_prices(text: str) -> list[int]:
    """Every ``$``-prefixed price in document order, in cents."""
    if not text:
        return []
    prices: list[int] = []
    for match in _DOLLAR_PATTERN.finditer(text):
        cents = dollars_to_cents(match.group(1))
        if cents is not None:
            prices.append(cents)
    return prices


def score_url_quality(url: str) -> UrlQuality:
    lower = (url or "").lower()
    if any(pattern.search(lower) for pattern in _SKIP_PATTERNS):
        return UrlQuality.SKIP
    if any(pattern.search(lower) for pattern in _LISTING_PATTERNS):
        return UrlQuality.LISTING
    return UrlQuality.GENERIC


def is_listing_url(url: str) -> bool:
    """True when ``url`` points at a single marketplace item page."""
    return score_url_quality(url) is UrlQuality.LISTING


def extract_domain(url: str) -> str:
    netloc = urlparse(url or "").netloc.lower()
    if ":" in netloc:
        netloc = netloc.split(":", 1)[0]
    if netloc.startswith("www."):
        netloc = netloc[4:]
    return netloc or "unknown"


def clean_title_for_search(title: str) -> str:
    """Strip tags, prices and discount noise from a deal title before searching on it."""
    cleaned = title or ""
    for pattern, replacement in _TITLE_SCRUBBERS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) > _SEARCH_TITLE_LIMIT:
        cleaned = cleaned[:_SEARCH_TITLE_LIMIT]
        last_space = cleaned.rfind(" ")
        if last_space > _SEARCH_TITLE_MIN_CUT:
            cleaned = cleaned[:last_space]
    return cleaned


def ebay_sold_search_url(title: str) -> str:
    """eBay completed/sold search for a product; the sell URL of last resort."""
    query = quote_plus(clean_title_for_search(title))
    return f"https://www.ebay.com/sch/i.html?_nkw={query}&LH_Sold=1&LH_Complete=1"


def format_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"
