"""Programmatic spread qualification. Pure functions: no I/O and no model calls."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from airbitrage.models.opportunity import LeadConfidence, SellPriceType
from pipelines.scout.extraction import (
    clean_title_for_search,
    dollars_to_cents,
    ebay_sold_search_url,
    extract_all_prices,
    is_listing_url,
)
from pipelines.scout.leads import (
    CollectibleLead,
    DealFeedItem,
    QualifiedLead,
    ResalePriceInfo,
    ScoutLead,
)

logger = logging.getLogger("pipelines.scout.filter")

MAX_UNRESEARCHED = 5
RETAIL_MIN_DISCOUNT_PERCENT = 35.0

_AMOUNT = r"([\d,]+(?:\.\d{2})?)"
_DEAL_PATTERNS: tuple[tuple[re.Pattern[str], bool], ...] = (
    # $44.99 (55% off $100)
    (re.compile(rf"\$\s?{_AMOUNT}\s*\(\s*\d+%\s*off\s*\$\s?{_AMOUNT}\s*\)", re.IGNORECASE), False),
    # $30 (was $60), (reg. $60), (MSRP $60) ...
    (
        re.compile(
            rf"\$\s?{_AMOUNT}\s*\(\s*(?:was|reg\.?|originally|msrp|regular\s*(?:price)?|retail)"
            rf"\s*\$?\s?{_AMOUNT}\s*\)",
            re.IGNORECASE,
        ),
        False,
    ),
    # was $60, now $30 / from $60 to $30; regular price comes first
    (
        re.compile(
            rf"(?:was|from)\s*\$\s?{_AMOUNT}\s*[,.]?\s*(?:now|to|→|->)\s*\$\s?{_AMOUNT}",
            re.IGNORECASE,
        ),
        True,
    ),
    # $30, regularly $60 / listed at $60
    (
        re.compile(
            rf"\$\s?{_AMOUNT}\s*[,.]?\s*(?:regularly|normally|usually|list(?:ed)?(?:\s+at)?)\s*\$?\s?{_AMOUNT}",
            re.IGNORECASE,
        ),
        False,
    ),
)
_PERCENT_OFF_PATTERN = re.compile(r"(\d+)%\s*off", re.IGNORECASE)


@dataclass(frozen=True)
class PricePoint:
    value: int
    weight: float


@dataclass(frozen=True)
class DealPricePair:
    deal_price: int
    regular_price: int

    @property
    def discount_percent(self) -> float:
        return (self.regular_price - self.deal_price) / self.regular_price * 100


def weighted_median(points: Sequence[PricePoint]) -> int:
    """Smallest value whose cumulative weight reaches half of the total weight."""
    if not points:
        return 0
    if len(points) == 1:
        return points[0].value
    ordered = sorted(points, key=lambda point: point.value)
    half = sum(point.weight for point in ordered) / 2
    cumulative = 0.0
    for point in ordered:
        cumulative += point.weight
        if cumulative >= half:
            return point.value
    return ordered[-1].value


def classify_confidence(resale: ResalePriceInfo, spread_percent: float) -> LeadConfidence:
    """Listing-backed evidence drives confidence; a big spread alone never does."""
    if (resale.listing_data_points >= 2 or resale.data_points >= 5) and spread_percent > 50:
        return LeadConfidence.HIGH
    if (resale.listing_data_points >= 1 or resale.data_points >= 3) and spread_percent > 30:
        return LeadConfidence.MEDIUM
    return LeadConfidence.LOW


def _research_needed(lead: ScoutLead, sell_url: str | None) -> QualifiedLead:
    return QualifiedLead(
        title=lead.title,
        description=lead.snippet,
        buy_price=lead.price_found or 0,
        buy_source=lead.source,
        buy_url=lead.url,
        sell_price_estimate=0,
        sell_source="Unknown",
        sell_url=sell_url or ebay_sold_search_url(lead.title),
        sell_price_type=SellPriceType.RESEARCH_NEEDED,
        estimated_spread=0,
        spread_percent=0.0,
        confidence=LeadConfidence.LOW,
        category=lead.category,
        raw=lead,
    )


def filter_leads_with_price_data(
    leads: Iterable[ScoutLead],
    resale_data: Mapping[str, ResalePriceInfo],
    *,
    min_profit_cents: int,
    min_spread_percent: float,
    include_unlooked_listings: bool = True,
) -> list[QualifiedLead]:
    """Qualify priced leads against their resale evidence.

    Qualified leads come first, largest spread first, followed by at most five
    ``research_needed`` leads: lookups that found no listing prices and, when
    ``include_unlooked_listings`` is set, priced listing-URL leads that were never
    looked up at all.
    """
    qualified: list[QualifiedLead] = []
    unresearched: list[QualifiedLead] = []
    rejected = {"no_price": 0, "no_resale": 0, "low_spread": 0, "low_percent": 0}

    for lead in leads:
        if not lead.has_price:
            rejected["no_price"] += 1
            continue
        resale = resale_data.get(lead.url) or resale_data.get(lead.title)
        if resale is None:
            if include_unlooked_listings and is_listing_url(lead.url):
                unresearched.append(_research_needed(lead, None))
            else:
                rejected["no_resale"] += 1
            continue
        if resale.estimated_price == 0 or resale.price_type is SellPriceType.RESEARCH_NEEDED:
            unresearched.append(_research_needed(lead, resale.url))
            continue

        buy_price = lead.price_found or 0
        spread = resale.estimated_price - buy_price
        spread_percent = spread / buy_price * 100
        if spread < min_profit_cents:
            rejected["low_spread"] += 1
            continue
        if spread_percent < min_spread_percent:
            rejected["low_percent"] += 1
            continue

        qualified.append(
            QualifiedLead(
                title=lead.title,
                description=lead.snippet,
                buy_price=buy_price,
                buy_source=lead.source,
                buy_url=lead.url,
                sell_price_estimate=resale.estimated_price,
                sell_source=resale.platform,
                sell_url=resale.url or ebay_sold_search_url(lead.title),
                sell_price_type=resale.price_type,
                estimated_spread=spread,
                spread_percent=spread_percent,
                confidence=classify_confidence(resale, spread_percent),
                category=lead.category,
                raw=lead,
            )
        )

    logger.info(
        "scout.filter.summary",
        extra={"qualified": len(qualified), "research_needed": len(unresearched), **rejected},
    )
    qualified.sort(key=lambda item: item.estimated_spread, reverse=True)
    return [*qualified, *unresearched[:MAX_UNRESEARCHED]]


def extract_deal_price_pair(text: str) -> DealPricePair | None:
    """Structured was/now patterns only; returns None rather than guessing."""
    for pattern, regular_first in _DEAL_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        first, second = dollars_to_cents(match.group(1)), dollars_to_cents(match.group(2))
        deal, regular = (second, first) if regular_first else (first, second)
        if deal and regular and regular > deal:
            return DealPricePair(deal_price=deal, regular_price=regular)
    return None


def _deal_lead(
    item: DealFeedItem,
    pair: DealPricePair,
    *,
    spread_percent: float,
    confidence: LeadConfidence,
) -> QualifiedLead:
    return QualifiedLead(
        title=item.title,
        description=item.description,
        buy_price=pair.deal_price,
        buy_source=item.source,
        buy_url=item.url,
        sell_price_estimate=pair.regular_price,
        sell_source="Amazon/eBay",
        sell_url=ebay_sold_search_url(item.title),
        sell_price_type=SellPriceType.ESTIMATED,
        estimated_spread=pair.regular_price - pair.deal_price,
        spread_percent=spread_percent,
        confidence=confidence,
        category=item.source,
        raw=item,
    )


def _qualify_deal_item(item: DealFeedItem, min_discount: float) -> QualifiedLead | None:
    pair = extract_deal_price_pair(item.title) or extract_deal_price_pair(f"{item.title} {item.description}")
    if pair is not None:
        discount = pair.discount_percent
        if discount < min_discount:
            return None
        confidence = LeadConfidence.HIGH if discount > 70 else LeadConfidence.MEDIUM
        return _deal_lead(item, pair, spread_percent=discount, confidence=confidence)

    title_prices = extract_all_prices(item.title)
    if len(title_prices) == 2:
        low, high = sorted(title_prices)
        if high > low:
            pair = DealPricePair(deal_price=low, regular_price=high)
            if pair.discount_percent >= min_discount:
                return _deal_lead(
                    item, pair, spread_percent=pair.discount_percent, confidence=LeadConfidence.MEDIUM
                )

    full_text = f"{item.title} {item.description}"
    percent_match = _PERCENT_OFF_PATTERN.search(full_text)
    if percent_match and len(title_prices) == 1:
        percent_off = int(percent_match.group(1))
        if min_discount <= percent_off < 95:
            deal = title_prices[0]
            regular = round(deal / (1 - percent_off / 100))
            if regular > deal:
                pair = DealPricePair(deal_price=deal, regular_price=regular)
                return _deal_lead(item, pair, spread_percent=float(percent_off), confidence=LeadConfidence.LOW)

    all_prices = extract_all_prices(full_text)
    if len(all_prices) >= 2 and title_prices:
        deal = title_prices[0]
        higher = sorted(price for price in all_prices if price > deal)
        if higher:
            pair = DealPricePair(deal_price=deal, regular_price=higher[len(higher) // 2])
            if pair.discount_percent >= min_discount:
                return _deal_lead(
                    item, pair, spread_percent=pair.discount_percent, confidence=LeadConfidence.LOW
                )
    return None


def filter_deal_feed_items(
    items: Iterable[DealFeedItem],
    *,
    min_discount_percent: float = RETAIL_MIN_DISCOUNT_PERCENT,
    min_profit_cents: int = 0,
) -> list[QualifiedLead]:
    """Turn deal-feed posts into leads using the regular price as the resale estimate."""
    qualified: list[QualifiedLead] = []
    for item in items:
        lead = _qualify_deal_item(item, min_discount_percent)
        if lead is not None and lead.estimated_spread >= min_profit_cents:
            qualified.append(lead)
    qualified.sort(key=lambda item: item.estimated_spread, reverse=True)
    return qualified


@dataclass(frozen=True)
class _CollectibleExit:
    sell_estimate: int
    sell_source: str
    sell_url: str
    confidence: LeadConfidence
    price_type: SellPriceType


def _collectible_exit(lead: ScoutLead) -> _CollectibleExit | None:
    buy_price = lead.price_found or 0
    if lead.source == "Discogs":
        query_title = f"{clean_title_for_search(lead.title)} vinyl"
        return _CollectibleExit(
            sell_estimate=round(buy_price * 1.5),
            sell_source="eBay",
            sell_url=ebay_sold_search_url(query_title),
            confidence=LeadConfidence.MEDIUM,
            price_type=SellPriceType.ESTIMATED,
        )
    if lead.source == "StockX":
        market = (lead.market_avg if isinstance(lead, CollectibleLead) else None) or buy_price
        if market <= buy_price * 1.2:
            return None
        return _CollectibleExit(
            sell_estimate=market,
            sell_source="StockX/GOAT",
            sell_url=lead.url,
            confidence=LeadConfidence.HIGH,
            price_type=SellPriceType.VERIFIED,
        )
    return _CollectibleExit(
        sell_estimate=round(buy_price * 1.3),
        sell_source="eBay",
        sell_url=ebay_sold_search_url(lead.title),
        confidence=LeadConfidence.LOW,
        price_type=SellPriceType.ESTIMATED,
    )


def qualify_collectibles_directly(
    leads: Iterable[ScoutLead],
    *,
    min_profit_cents: int,
    min_spread_percent: float = 0.0,
) -> list[QualifiedLead]:
    """Price marketplace collectibles from their own market data, without resale searches.

    The net spread after platform fees and shipping must clear ``min_profit_cents``;
    the recorded spread stays gross so it always equals sell minus buy.
    """
    qualified: list[QualifiedLead] = []
    for lead in leads:
        if not lead.has_price:
            continue
        exit_ = _collectible_exit(lead)
        if exit_ is None:
            continue
        buy_price = lead.price_found or 0
        stockx = exit_.sell_source == "StockX/GOAT"
        fees = round(exit_.sell_estimate * (0.095 if stockx else 0.1313))
        shipping = 0 if stockx else 800
        net = exit_.sell_estimate - buy_price - fees - shipping
        gross = exit_.sell_estimate - buy_price
        spread_percent = gross / buy_price * 100
        if net < min_profit_cents or gross < min_profit_cents or spread_percent < min_spread_percent:
            continue
        qualified.append(
            QualifiedLead(
                title=lead.title,
                description=(
                    f"{lead.snippet} - Buy on {lead.source} for ${buy_price / 100:.2f}, estimated resale "
                    f"${exit_.sell_estimate / 100:.2f} on {exit_.sell_source} "
                    f"(after ~${fees / 100:.2f} fees, ${net / 100:.2f} net)."
                ),
                buy_price=buy_price,
                buy_source=lead.source,
                buy_url=lead.url,
                sell_price_estimate=exit_.sell_estimate,
                sell_source=exit_.sell_source,
                sell_url=exit_.sell_url,
                sell_price_type=exit_.price_type,
                estimated_spread=gross,
                spread_percent=spread_percent,
                confidence=exit_.confidence,
                category=lead.category,
                raw=lead,
            )
        )
    qualified.sort(key=lambda item: item.estimated_spread, reverse=True)
    return qualified
