"""Cross-exchange crypto spread detection and direct opportunity building."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from itertools import combinations

from airbitrage.models.opportunity import FeeBreakdown, ParsedOpportunity, SellPriceType
from pipelines.scout.leads import CryptoQuote, CryptoSpread

logger = logging.getLogger("pipelines.scout.spread")

TRADING_FEE_RATE = 0.001
WITHDRAWAL_FEE_CENTS = 500
CRYPTO_RISK_NOTES: tuple[str, ...] = (
    "Spread may close during transfer time",
    "Transfer time depends on network congestion",
    "Price is a snapshot - may change by the time you trade",
)


def find_crypto_spreads(quotes: Iterable[CryptoQuote], min_spread_percent: float = 0.3) -> list[CryptoSpread]:
    """Compare every exchange pairing per trading pair; largest spread first."""
    by_pair: dict[str, list[CryptoQuote]] = defaultdict(list)
    for quote in quotes:
        by_pair[quote.pair].append(quote)

    spreads: list[CryptoSpread] = []
    for pair, pair_quotes in by_pair.items():
        for first, second in combinations(pair_quotes, 2):
            low, high = (first, second) if first.price <= second.price else (second, first)
            if low.price <= 0:
                continue
            spread_percent = (high.price - low.price) / low.price * 100
            if spread_percent < min_spread_percent:
                continue
            spreads.append(
                CryptoSpread(
                    pair=pair,
                    buy_exchange=low.exchange,
                    buy_price=low.price,
                    buy_url=low.url,
                    sell_exchange=high.exchange,
                    sell_price=high.price,
                    sell_url=high.url,
                    spread_percent=spread_percent,
                    spread_amount=high.price - low.price,
                )
            )
    spreads.sort(key=lambda spread: spread.spread_percent, reverse=True)
    return spreads


def _confidence(spread_percent: float) -> int:
    if spread_percent > 1:
        return 85
    if spread_percent > 0.5:
        return 70
    return 55


def build_crypto_opportunities(spreads: Iterable[CryptoSpread]) -> list[ParsedOpportunity]:
    """Live exchange quotes are trusted directly: every spread becomes a verified opportunity."""
    opportunities: list[ParsedOpportunity] = []
    for spread in spreads:
        buy_cents = round(spread.buy_price * 100)
        sell_cents = round(spread.sell_price * 100)
        platform_fee = round(buy_cents * TRADING_FEE_RATE) + round(sell_cents * TRADING_FEE_RATE)
        total_fees = platform_fee + WITHDRAWAL_FEE_CENTS
        opportunities.append(
            ParsedOpportunity(
                title=f"{spread.pair} Spread: {spread.buy_exchange} → {spread.sell_exchange}",
                description=(
                    f"{spread.pair} is trading at ${spread.buy_price:.2f} on {spread.buy_exchange} and "
                    f"${spread.sell_price:.2f} on {spread.sell_exchange}. "
                    f"Spread: {spread.spread_percent:.3f}%."
                ),
                buy_price=buy_cents,
                buy_source=spread.buy_exchange,
                buy_url=spread.buy_url,
                sell_price=sell_cents,
                sell_source=spread.sell_exchange,
                sell_url=spread.sell_url,
                sell_price_type=SellPriceType.VERIFIED,
                estimated_profit=max(0, sell_cents - buy_cents - total_fees),
                fees=FeeBreakdown(platform_fee=platform_fee, other=WITHDRAWAL_FEE_CENTS, total=total_fees),
                confidence=_confidence(spread.spread_percent),
                risk_notes=list(CRYPTO_RISK_NOTES),
                reasoning=(
                    f"Live API data: {spread.buy_exchange} price ${spread.buy_price:.2f} vs "
                    f"{spread.sell_exchange} price ${spread.sell_price:.2f}. "
                    f"Raw spread {spread.spread_percent:.3f}%."
                ),
            )
        )
    logger.info("scout.crypto.opportunities", extra={"count": len(opportunities)})
    return opportunities
