"""Agent types and the user-supplied overrides accepted for a run."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AgentType(str, Enum):
    LISTINGS = "listings"
    AUCTIONS = "auctions"
    CRYPTO = "crypto"
    RETAIL = "retail"
    TICKETS = "tickets"
    COLLECTIBLES = "collectibles"
    BOOKS = "books"


@dataclass(frozen=True)
class AgentTypeInfo:
    agent_type: AgentType
    name: str
    description: str
    sources: tuple[str, ...]
    active: bool


AGENT_TYPES: Final[dict[AgentType, AgentTypeInfo]] = {
    AgentType.LISTINGS: AgentTypeInfo(
        AgentType.LISTINGS,
        "Listings Agent",
        "Local marketplaces via Craigslist RSS feeds across major cities",
        ("Craigslist", "FB Marketplace", "OfferUp"),
        True,
    ),
    AgentType.AUCTIONS: AgentTypeInfo(
        AgentType.AUCTIONS,
        "Auction Agent",
        "eBay auctions, estate sales and government surplus",
        ("eBay", "GSA Auctions", "GovDeals"),
        True,
    ),
    AgentType.CRYPTO: AgentTypeInfo(
        AgentType.CRYPTO,
        "Crypto Agent",
        "Cross-exchange price spreads",
        ("Binance", "Coinbase", "Kraken"),
        False,
    ),
    AgentType.RETAIL: AgentTypeInfo(
        AgentType.RETAIL,
        "Retail Agent",
        "Clearance sales and deal feeds",
        ("Slickdeals", "DealNews", "Reddit"),
        True,
    ),
    AgentType.TICKETS: AgentTypeInfo(
        AgentType.TICKETS,
        "Tickets Agent",
        "Concert, sports and event ticket spreads",
        ("Ticketmaster", "StubHub", "SeatGeek"),
        False,
    ),
    AgentType.COLLECTIBLES: AgentTypeInfo(
        AgentType.COLLECTIBLES,
        "Collectibles Agent",
        "Sneakers, trading cards and vinyl",
        ("Discogs", "StockX/kicks.dev"),
        True,
    ),
    AgentType.BOOKS: AgentTypeInfo(
        AgentType.BOOKS,
        "Books/Media Agent",
        "ISBN-based book arbitrage via Open Library and Amazon/eBay",
        ("Open Library", "Amazon", "eBay"),
        True,
    ),
}

ACTIVE_AGENTS: Final[frozenset[AgentType]] = frozenset(
    agent_type for agent_type, info in AGENT_TYPES.items() if info.active
)


class RunOverrides(BaseModel):
    """Optional per-run configuration supplied by the caller."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    categories: list[str] = Field(default_factory=list)
    min_profit_cents: int | None = Field(default=None, ge=0)
    region: str | None = None
    pairs: list[str] = Field(default_factory=list)
    min_spread_percent: float | None = Field(default=None, ge=0)
    event_types: list[str] = Field(default_factory=list)
