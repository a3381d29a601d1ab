"""Buyer-intent harvester for Reddit swap subreddits.

Posts that advertise cash for an item (``[H] PayPal [W] RTX 4090``) or carry a
``[WTB]`` tag or a buying flair become ``BuyIntent`` records. Posts without a stated
price are kept with ``max_price=0`` so a later market lookup can price them.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from pipelines.scout.extraction import dollars_to_cents, extract_price
from pipelines.scout.leads import SourceDiagnostic
from pipelines.scout.sources.base import (
    SleepFn,
    SourceFetchError,
    default_sleep,
    diagnostic_for_count,
    diagnostic_for_error,
    fetch_json,
)

HW_FORMAT_SUBS: tuple[str, ...] = (
    "hardwareswap",
    "mechmarket",
    "photomarket",
    "appleswap",
    "AVexchange",
    "gamesale",
    "homelabsales",
    "Knife_Swap",
    "Pen_Swap",
    "GunAccessoriesForSale",
    "comicswap",
    "funkoswap",
)
WTB_FORMAT_SUBS: tuple[str, ...] = ("watchexchange", "vinylcollectors")

MIN_PRICE_CENTS = 2500
MAX_POST_AGE_HOURS = 72
REQUEST_DELAY_SECONDS = 0.4
POSTS_PER_SUB = 100
REDDIT_USER_AGENT = "Mozilla/5.0 (compatible; Airbitrage/1.0)"
_ITEM_LIMIT = 150
_BODY_SCAN_LIMIT = 2000
_BODY_PRICE_MIN_CENTS = 1_500
_BODY_PRICE_MAX_CENTS = 5_000_000

_HW_PATTERN = re.compile(r"\[H\]\s*(.*?)\s*\[W\]\s*(.*)", re.IGNORECASE)
_PAYMENT_PATTERN = re.compile(r"paypal|cash|venmo|zelle|money|\$", re.IGNORECASE)
_PAYMENT_WORDS_PATTERN = re.compile(
    r"paypal|cash|venmo|zelle|money|local|g&s|goods\s*(?:&|and)\s*services|\$[\d,.]+",
    re.IGNORECASE,
)
_BRACKET_PATTERN = re.compile(r"\[.*?\]")
_LOCAL_SUFFIX_PATTERN = re.compile(r",?\s*local.*$", re.IGNORECASE)
_WTB_PATTERN = re.compile(r"\[WTB\]", re.IGNORECASE)
_BUY_FLAIR_PATTERN = re.compile(r"^buy", re.IGNORECASE)
_TITLE_PAYMENT_PATTERN = re.compile(r"paypal|cash|venmo|zelle|local\s*cash", re.IGNORECASE)
_TITLE_DOLLAR_PATTERN = re.compile(r"\$[\d,.]+")
_BODY_PRICE_PATTERN = re.compile(r"\$\s?([\d,]+(?:\.\d{2})?)")
_REGION_PATTERN = re.compile(r"\[([A-Z]{2,3}-[A-Z]{2})\]", re.IGNORECASE)
_COUNTRY_PATTERN = re.compile(r"\[(USA?|CAN|UK|EU)\]", re.IGNORECASE)
_TRADE_PATTERNS = (
    re.compile(r"(\d+)\s*(?:trades?|confirmed|swaps?)", re.IGNORECASE),
    re.compile(r"(?:trades?|confirmed|swaps?)\s*:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"^(\d+)$"),
)


@dataclass(frozen=True)
class BuyIntent:
    title: str
    item_wanted: str
    max_price: int
    has_stated_price: bool
    location: str
    buyer_username: str
    buyer_trade_count: int
    source: str
    post_url: str
    post_age_hours: int
    created: float


@dataclass(frozen=True)
class HaveWant:
    location: str
    item_wanted: str
    max_price: int | None


@dataclass
class HarvestResult:
    intents: list[BuyIntent]
    diagnostics: list[SourceDiagnostic]


def parse_hw_format(title: str) -> HaveWant | None:
    """Parse ``[H] payment [W] item``; returns None for sell posts (cash in the want section)."""
    match = _HW_PATTERN.search(title)
    if not match:
        return None
    have, want = match.group(1).strip(), match.group(2).strip()
    if not _PAYMENT_PATTERN.search(have):
        return None

    remainder = _PAYMENT_WORDS_PATTERN.sub("", _BRACKET_PATTERN.sub("", want)).replace(",", "").strip()
    if _PAYMENT_PATTERN.search(want) and len(remainder) < 3:
        return None

    item = _LOCAL_SUFFIX_PATTERN.sub("", _BRACKET_PATTERN.sub("", want)).strip()
    if len(item) < 3:
        return None
    return HaveWant(location=extract_location(title), item_wanted=item[:_ITEM_LIMIT], max_price=extract_price(have))


def extract_best_body_price(selftext: str) -> int | None:
    """Highest plausible ($15 to $50k) price in the first part of a post body."""
    prices = []
    for match in _BODY_PRICE_PATTERN.finditer(selftext[:_BODY_SCAN_LIMIT]):
        cents = dollars_to_cents(match.group(1))
        if cents is not None and _BODY_PRICE_MIN_CENTS <= cents < _BODY_PRICE_MAX_CENTS:
            prices.append(cents)
    return max(prices) if prices else None


def extract_location(title: str) -> str:
    match = _REGION_PATTERN.search(title) or _COUNTRY_PATTERN.search(title)
    return match.group(1).upper() if match else "unknown"


def parse_trade_count(flair: str | None) -> int:
    if not flair:
        return 0
    for pattern in _TRADE_PATTERNS:
        match = pattern.search(flair)
        if match:
            return int(match.group(1))
    return 0


def parse_buy_intent(post: dict[str, Any], subreddit: str, age_hours: float) -> BuyIntent | None:
    title = post.get("title") or ""
    selftext = post.get("selftext") or ""
    flair = (post.get("link_flair_text") or "").strip()

    have_want = parse_hw_format(title)
    is_buying = bool(flair and _BUY_FLAIR_PATTERN.search(flair)) or bool(_WTB_PATTERN.search(title))
    if have_want is None and not is_buying:
        return None

    if have_want is not None:
        item = have_want.item_wanted
    else:
        item = _BRACKET_PATTERN.sub("", title)
        item = _TITLE_DOLLAR_PATTERN.sub("", item)
        item = _TITLE_PAYMENT_PATTERN.sub("", item).strip()
    if len(item) < 3:
        return None

    max_price = (have_want.max_price if have_want else None) or extract_price(title)
    if not max_price and selftext:
        max_price = extract_best_body_price(selftext)

    return BuyIntent(
        title=title,
        item_wanted=item[:_ITEM_LIMIT],
        max_price=max_price or 0,
        has_stated_price=bool(max_price),
        location=extract_location(title),
        buyer_username=post.get("author") or "",
        buyer_trade_count=parse_trade_count(post.get("author_flair_text")),
        source=f"r/{subreddit}",
        post_url=f"https://www.reddit.com{post.get('permalink') or ''}",
        post_age_hours=round(age_hours),
        created=float(post.get("created_utc") or 0),
    )


def intents_from_listing(
    payload: Any, subreddit: str, *, now: float
) -> list[BuyIntent]:
    children = (payload.get("data") or {}).get("children") if isinstance(payload, dict) else None
    intents: list[BuyIntent] = []
    for child in children or []:
        post = child.get("data") if isinstance(child, dict) else None
        if not isinstance(post, dict):
            continue
        age_hours = (now - float(post.get("created_utc") or 0)) / 3600
        if age_hours > MAX_POST_AGE_HOURS:
            continue
        intent = parse_buy_intent(post, subreddit, age_hours)
        if intent is None:
            continue
        if intent.has_stated_price and intent.max_price < MIN_PRICE_CENTS:
            continue
        intents.append(intent)
    return intents


async def harvest_buy_intents(
    http: httpx.AsyncClient,
    *,
    subreddits: Sequence[str] = (*HW_FORMAT_SUBS, *WTB_FORMAT_SUBS),
    timeout: float = 10.0,
    sleep: SleepFn = default_sleep,
    clock: Callable[[], float] = time.time,
) -> HarvestResult:
    """Walk each subreddit's newest posts sequentially; priced intents sort first, highest price first."""
    intents: list[BuyIntent] = []
    diagnostics: list[SourceDiagnostic] = []
    for subreddit in subreddits:
        started = time.perf_counter()
        source = f"r/{subreddit}"
        try:
            payload = await fetch_json(
                http,
                f"https://www.reddit.com/r/{subreddit}/new.json",
                timeout=timeout,
                headers={"User-Agent": REDDIT_USER_AGENT, "Accept": "application/json"},
                params={"limit": POSTS_PER_SUB},
            )
        except SourceFetchError as exc:
            diagnostics.append(diagnostic_for_error(source, started, exc))
        else:
            found = intents_from_listing(payload, subreddit, now=clock())
            intents.extend(found)
            diagnostics.append(diagnostic_for_count(source, started, len(found)))
        await sleep(REQUEST_DELAY_SECONDS)

    intents.sort(key=lambda intent: (not intent.has_stated_price, -intent.max_price))
    return HarvestResult(intents=intents, diagnostics=diagnostics)


def harvest_summary(result: HarvestResult, elapsed_ms: int) -> dict[str, Any]:
    priced = [intent for intent in result.intents if intent.has_stated_price]
    priceless = [intent for intent in result.intents if not intent.has_stated_price]
    return {
        "elapsed": f"{elapsed_ms}ms",
        "totalIntents": len(result.intents),
        "pricedCount": len(priced),
        "pricelessCount": len(priceless),
        "diagnostics": [diagnostic.to_payload() for diagnostic in result.diagnostics],
        "topPriced": [
            {
                "item": intent.item_wanted,
                "price": f"${intent.max_price / 100:.0f}",
                "source": intent.source,
                "buyer": intent.buyer_username,
                "trades": intent.buyer_trade_count,
                "age": f"{intent.post_age_hours}h",
            }
            for intent in priced[:10]
        ],
        "topPriceless": [
            {
                "item": intent.item_wanted,
                "source": intent.source,
                "buyer": intent.buyer_username,
                "trades": intent.buyer_trade_count,
                "age": f"{intent.post_age_hours}h",
            }
            for intent in priceless[:10]
        ],
    }
