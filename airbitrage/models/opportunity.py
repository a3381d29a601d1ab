"""Externally visible opportunity payloads. All money fields are integer cents."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, conint
from pydantic.alias_generators import to_camel


class SellPriceType(str, Enum):
    """Trust tier of a sell-side price, by count of independent listing data points."""

    VERIFIED = "verified"
    ESTIMATED = "estimated"
    RESEARCH_NEEDED = "research_needed"


class LeadConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class FeeBreakdown(CamelModel):
    platform_fee: int | None = None
    shipping_cost: int | None = None
    payment_processing: int | None = None
    other: int | None = None
    total: int = 0


class ParsedOpportunity(CamelModel):
    """Verified arbitrage opportunity produced by the snipe engine or the crypto detector."""

    title: str
    description: str = ""
    buy_price: int
    buy_source: str
    buy_url: str = ""
    sell_price: int
    sell_source: str
    sell_url: str = ""
    sell_price_type: SellPriceType = SellPriceType.ESTIMATED
    estimated_profit: int = 0
    fees: FeeBreakdown = Field(default_factory=FeeBreakdown)
    confidence: conint(ge=0, le=100) = 50  # type: ignore[valid-type]
    risk_notes: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def arithmetic_gap(self) -> int:
        """Difference between the reported profit and sell - buy - fees."""
        return self.estimated_profit - (self.sell_price - self.buy_price - self.fees.total)


def coerce_opportunity(candidate: Any) -> ParsedOpportunity | None:
    """Build an opportunity from model output, or ``None`` when required fields are missing.

    Required: a title, numeric buy and sell prices, and both sources. A missing or
    unknown ``sellPriceType`` falls back to ``estimated``.
    """
    if not isinstance(candidate, dict):
        return None
    if not candidate.get("title") or not candidate.get("buySource") or not candidate.get("sellSource"):
        return None
    for key in ("buyPrice", "sellPrice"):
        value = candidate.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None

    payload = dict(candidate)
    payload["buyPrice"] = round(payload["buyPrice"])
    payload["sellPrice"] = round(payload["sellPrice"])
    if payload.get("sellPriceType") not in {item.value for item in SellPriceType}:
        payload["sellPriceType"] = SellPriceType.ESTIMATED.value
    profit = payload.get("estimatedProfit")
    payload["estimatedProfit"] = round(profit) if isinstance(profit, (int, float)) else 0
    confidence = payload.get("confidence")
    if isinstance(confidence, (int, float)):
        payload["confidence"] = max(0, min(100, round(confidence)))
    else:
        payload.pop("confidence", None)
    if not isinstance(payload.get("fees"), dict):
        payload["fees"] = {}
    else:
        payload["fees"] = {
            key: round(value)
            for key, value in payload["fees"].items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }
    notes = payload.get("riskNotes")
    payload["riskNotes"] = [str(note) for note in notes] if isinstance(notes, list) else []
    for key in ("description", "buyUrl", "sellUrl", "reasoning"):
        if not isinstance(payload.get(key), str):
            payload[key] = ""
    try:
        return ParsedOpportunity.model_validate(payload)
    except ValidationError:
        return None
