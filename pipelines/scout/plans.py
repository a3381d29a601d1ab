"""Per-agent scout plans: which sources to hit and which thresholds to qualify against.

Each agent type has its own plan class carrying only what that agent needs. Plans
are pure functions of the agent type and the caller's overrides.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from airbitrage.models.agent import AgentType, RunOverrides
from pipelines.scout.sources.craigslist import CraigslistQuery

MAX_SEARCH_QUERIES = 12
DEFAULT_CRAIGSLIST_CATEGORIES: tuple[str, ...] = ("electronics", "furniture", "tools", "musical")

DEFAULT_CRYPTO_PAIRS: tuple[str, ...] = (
    "BTC/USD", "ETH/USD", "SOL/USD", "XRP/USD",
    "DOGE/USD", "ADA/USD", "AVAX/USD", "DOT/USD",
    "LINK/USD", "UNI/USD", "ATOM/USD", "NEAR/USD",
    "FIL/USD", "APT/USD", "ARB/USD", "OP/USD",
    "LTC/USD", "BCH/USD", "ETC/USD", "ALGO/USD",
    # USDT premium
    "BTC/USDT", "ETH/USDT",
)

LISTINGS_QUERIES: tuple[str, ...] = (
    "site:offerup.com/item/ macbook pro",
    "site:offerup.com/item/ iphone 15",
    "site:mercari.com/item/ herman miller aeron",
    "site:mercari.com/item/ dyson vacuum",
    "site:offerup.com/item/ milwaukee tools",
    "site:offerup.com/item/ nintendo switch",
)

AUCTION_QUERIES: tuple[str, ...] = (
    "site:ebay.com/itm vintage electronics auction",
    "site:ebay.com/itm camera lens auction",
    "site:ebay.com/itm vintage watch lot",
    "site:ebay.com/itm audio equipment lot",
    "site:ebay.com/itm power tools lot auction",
    "site:ebay.com/itm musical instrument auction",
    "site:estatesales.net electronics lot sale",
    "site:estatesales.net tools equipment",
    "site:hibid.com electronics lot",
    "site:hibid.com equipment tools lot",
    "site:maxsold.com electronics auction",
    "site:auctionninja.com lot auction",
)

RETAIL_QUERIES: tuple[str, ...] = (
    "target clearance 70 off toys this week",
    "target clearance home goods markdown",
    "target clearance baby products deals",
    "target clearance kitchen appliances",
    "walmart clearance electronics deals today",
    "walmart hidden clearance markdown",
    "walmart clearance tools hardware",
    "costco clearance markdowns",
    "best buy open box clearance deals",
    "home depot clearance power tools discount",
    "amazon warehouse deals open box",
    "kohls clearance 80 percent off",
    "nordstrom rack clearance designer",
    "lowes clearance tools hardware",
    "lego set clearance discount sale",
    "dyson vacuum clearance refurbished",
    "ninja blender clearance sale",
    "instant pot clearance deal",
    "airpods clearance discount sale",
)

TICKET_QUERIES: tuple[str, ...] = (
    "sold out concert tickets 2025 face value available",
    "ticketmaster presale code concert this week",
    "stubhub cheapest tickets popular concert",
    "seatgeek best deals concert tickets",
    "vividseats cheap tickets sold out show",
    "nba playoff tickets face value 2025",
    "nfl tickets below face value",
    "mlb tickets cheap deals this week",
    "premier league tickets resale price",
    "champions league tickets for sale",
    "march madness tickets face value",
    "taylor swift eras tour tickets resale price",
    "beyonce concert tickets for sale",
    "coachella tickets face value below resale",
    "lollapalooza festival tickets cheap",
    "sold out concert tickets available primary",
    "tickets face value vs stubhub resale price",
    "concert tickets resale profit 2025",
    "underpriced tickets secondary market",
    "event tickets below market value",
)

COLLECTIBLE_QUERIES: tuple[str, ...] = (
    "site:ebay.com/itm jordan retro buy it now",
    "site:mercari.com/item/ jordan sneakers",
    "site:mercari.com/item/ yeezy",
    "site:ebay.com/itm pokemon booster box",
    "site:mercari.com/item/ pokemon cards lot",
    "site:tcgplayer.com/product pokemon",
    "site:ebay.com/itm vinyl record first pressing",
    "site:mercari.com/item/ vinyl records lot",
    "site:ebay.com/itm lego retired set sealed",
    "site:mercari.com/item/ lego set",
    "site:ebay.com/itm funko pop exclusive",
    "site:mercari.com/item/ hot wheels",
)

BOOK_QUERIES: tuple[str, ...] = (
    "used textbooks for sale cheap lot",
    "college textbook lot for sale",
    "medical textbook used for sale cheap",
    "engineering textbook used cheap",
    "site:ebay.com textbook lot",
    "out of print books for sale",
    "rare first edition book for sale",
    "signed book for sale cheap",
    "vintage book lot for sale",
    "thrift store book haul valuable finds",
    "library book sale this week",
    "used books lot for sale cheap bulk",
    "estate sale books lot",
    "technical programming book used for sale",
    "art book coffee table for sale cheap",
    "vintage cookbook for sale lot",
    "children book lot for sale",
    "site:ebay.com book lot buy it now",
    "amazon fba book arbitrage finds",
)


@dataclass(frozen=True)
class ScoutPlan:
    agent_type: AgentType
    search_queries: tuple[str, ...]
    min_profit_cents: int
    min_spread_percent: float

    @property
    def queries_to_run(self) -> tuple[str, ...]:
        return self.search_queries[:MAX_SEARCH_QUERIES]


@dataclass(frozen=True)
class ListingsPlan(ScoutPlan):
    craigslist: CraigslistQuery = CraigslistQuery()


@dataclass(frozen=True)
class AuctionsPlan(ScoutPlan):
    """eBay search plus government surplus auctions."""


@dataclass(frozen=True)
class CryptoPlan(ScoutPlan):
    pairs: tuple[str, ...] = DEFAULT_CRYPTO_PAIRS


@dataclass(frozen=True)
class RetailPlan(ScoutPlan):
    min_discount_percent: float = 35.0


@dataclass(frozen=True)
class TicketsPlan(ScoutPlan):
    """Web search only."""


@dataclass(frozen=True)
class CollectiblesPlan(ScoutPlan):
    """eBay search plus Discogs and sneaker market data."""


@dataclass(frozen=True)
class BooksPlan(ScoutPlan):
    """eBay search plus Open Library identities priced by ISBN lookups."""


AnyScoutPlan = Union[
    ListingsPlan,
    AuctionsPlan,
    CryptoPlan,
    RetailPlan,
    TicketsPlan,
    CollectiblesPlan,
    BooksPlan,
]

# Plans whose queries also seed eBay listing/sold searches.
EBAY_SEARCH_PLANS = (AuctionsPlan, CollectiblesPlan, BooksPlan)


def _normalize_city(region: str) -> str:
    return re.sub(r"\s+", "", region.strip().lower())


def _per_category(categories: list[str], templates: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(template.format(cat=category) for category in categories for template in templates)


def build_scout_plan(agent_type: AgentType, overrides: RunOverrides | None = None) -> AnyScoutPlan:
    """Resolve the plan for ``agent_type`` with the caller's overrides applied."""
    overrides = overrides or RunOverrides()
    categories = [category.strip() for category in overrides.categories if category.strip()]

    def min_profit(default: int) -> int:
        return overrides.min_profit_cents or default

    if agent_type is AgentType.LISTINGS:
        queries = (
            _per_category(categories, ("site:offerup.com/item {cat} for sale", "site:mercari.com/item {cat}"))
            or LISTINGS_QUERIES
        )
        cities = (_normalize_city(overrides.region),) if overrides.region and overrides.region.strip() else ()
        return ListingsPlan(
            agent_type=agent_type,
            search_queries=queries,
            min_profit_cents=min_profit(2000),
            min_spread_percent=25.0,
            craigslist=CraigslistQuery(
                cities=cities,
                categories=tuple(categories) or DEFAULT_CRAIGSLIST_CATEGORIES,
                queries=tuple(categories),
            ),
        )

    if agent_type is AgentType.AUCTIONS:
        queries = (
            _per_category(
                categories,
                ("site:ebay.com/itm {cat} auction", "site:estatesales.net {cat} lot", "site:hibid.com {cat} lot"),
            )
            or AUCTION_QUERIES
        )
        return AuctionsPlan(
            agent_type=agent_type,
            search_queries=queries,
            min_profit_cents=min_profit(2000),
            min_spread_percent=20.0,
        )

    if agent_type is AgentType.CRYPTO:
        return CryptoPlan(
            agent_type=agent_type,
            search_queries=(),
            min_profit_cents=0,
            min_spread_percent=(
                overrides.min_spread_percent if overrides.min_spread_percent is not None else 0.15
            ),
            pairs=tuple(overrides.pairs) or DEFAULT_CRYPTO_PAIRS,
        )

    if agent_type is AgentType.RETAIL:
        queries = (
            _per_category(
                categories,
                (
                    "{cat} clearance sale 70% off this week",
                    "target clearance {cat} markdown",
                    "walmart clearance {cat} deals",
                    "{cat} open box deal clearance",
                ),
            )
            or RETAIL_QUERIES
        )
        return RetailPlan(
            agent_type=agent_type,
            search_queries=queries,
            min_profit_cents=min_profit(1500),
            min_spread_percent=35.0,
        )

    if agent_type is AgentType.TICKETS:
        event_queries = _per_category(
            [event.strip() for event in overrides.event_types if event.strip()],
            (
                "{cat} tickets for sale this month",
                "{cat} tickets face value below resale",
                "{cat} tickets cheap deal 2025",
            ),
        )
        return TicketsPlan(
            agent_type=agent_type,
            # Event queries lead so the query cap never drops them.
            search_queries=(*event_queries, *TICKET_QUERIES),
            min_profit_cents=min_profit(2000),
            min_spread_percent=20.0,
        )

    if agent_type is AgentType.COLLECTIBLES:
        queries = (
            _per_category(categories, ("site:ebay.com/itm {cat} buy it now", "site:mercari.com/item {cat}"))
            or COLLECTIBLE_QUERIES
        )
        return CollectiblesPlan(
            agent_type=agent_type,
            search_queries=queries,
            min_profit_cents=min_profit(1500),
            min_spread_percent=20.0,
        )

    if agent_type is AgentType.BOOKS:
        queries = (
            _per_category(
                categories,
                (
                    "{cat} used books cheap lot for sale",
                    "{cat} amazon fba profitable books",
                    "site:ebay.com {cat} book lot",
                ),
            )
            or BOOK_QUERIES
        )
        return BooksPlan(
            agent_type=agent_type,
            search_queries=queries,
            min_profit_cents=min_profit(800),
            min_spread_percent=35.0,
        )

    raise ValueError(f"Unsupported agent type: {agent_type}")
