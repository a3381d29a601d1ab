"""Immutable records passed between scout sources, filters and the snipe engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from airbitrage.models.opportunity import LeadConfidence, SellPriceType

_LeadT = TypeVar("_LeadT")


class SourceStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class SourceDiagnostic:
    """Per-source health record; the only trace a failed fetch leaves behind."""

    source: str
    status: SourceStatus
    item_count: int
    duration_ms: int
    status_code: int | None = None
    error: str | None = None

    def describe(self) -> str:
        detail = f" ({self.error})" if self.error else ""
        return f"{self.source}: {self.status.value}{detail}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status.value,
            "statusCode": self.status_code,
            "error": self.error,
            "itemCount": self.item_count,
            "durationMs": self.duration_ms,
        }


@dataclass
class SourceResult(Generic[_LeadT]):
    leads: list[_LeadT] = field(default_factory=list)
    diagnostics: list[SourceDiagnostic] = field(default_factory=list)


@dataclass(frozen=True)
class ScoutLead:
    """Raw candidate found by a source fetcher. Prices are integer cents."""

    title: str
    url: str
    snippet: str
    source: str
    price_found: int | None
    category: str

    @property
    def has_price(self) -> bool:
        return bool(self.price_found and self.price_found > 0)


@dataclass(frozen=True)
class CollectibleLead(ScoutLead):
    product_id: str | None = None
    market_avg: int | None = None


@dataclass(frozen=True)
class BookLead(ScoutLead):
    isbn: str | None = None
    author: str | None = None
    publish_year: int | None = None


@dataclass(frozen=True)
class DealFeedItem:
    title: str
    url: str
    description: str
    source: str
    pub_date: str


@dataclass(frozen=True)
class CryptoQuote:
    """Spot price for one pair on one exchange, in quote currency units."""

    exchange: str
    pair: str
    price: float
    url: str
    timestamp: float


@dataclass(frozen=True)
class CryptoSpread:
    pair: str
    buy_exchange: str
    buy_price: float
    buy_url: str
    sell_exchange: str
    sell_price: float
    sell_url: str
    spread_percent: float
    spread_amount: float


@dataclass(frozen=True)
class ResalePriceInfo:
    """Outcome of a resale lookup for one lead."""

    estimated_price: int
    platform: str
    url: str
    data_points: int
    listing_data_points: int
    price_type: SellPriceType


@dataclass(frozen=True)
class QualifiedLead:
    """A lead that passed spread filtering and is eligible for verification.

    ``estimated_spread`` is always ``sell_price_estimate - buy_price``; research-needed
    leads carry a zero sell estimate and a zero spread.
    """

    title: str
    description: str
    buy_price: int
    buy_source: str
    buy_url: str
    sell_price_estimate: int
    sell_source: str
    sell_url: str
    sell_price_type: SellPriceType
    estimated_spread: int
    spread_percent: float
    confidence: LeadConfidence
    category: str
    raw: ScoutLead | DealFeedItem | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("raw", None)
        payload["sell_price_type"] = self.sell_price_type.value
        payload["confidence"] = self.confidence.value
        return payload
