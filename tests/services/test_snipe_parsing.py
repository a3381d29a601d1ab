import json

from airbitrage.models.opportunity import SellPriceType, coerce_opportunity
from airbitrage.services.snipe.parsing import extract_reasoning, parse_opportunities


def _candidate(**overrides):
    payload = {
        "title": "LEGO 10294 Titanic",
        "buyPrice": 40000,
        "buySource": "Mercari",
        "sellPrice": 62000,
        "sellSource": "eBay",
        "estimatedProfit": 12000,
        "fees": {"platformFee": 8000, "shippingCost": 2000, "total": 10000},
        "sellPriceType": "verified",
        "confidence": 75,
    }
    payload.update(overrides)
    return payload


def test_tagged_block_is_preferred():
    text = f"Reasoning first.\n<opportunities>\n{json.dumps([_candidate()])}\n</opportunities>\nDone."

    (opportunity,) = parse_opportunities(text)

    assert opportunity.title == "LEGO 10294 Titanic"
    assert opportunity.fees.total == 10_000
    assert opportunity.sell_price_type is SellPriceType.VERIFIED
    assert extract_reasoning(text) == "Reasoning first.\n\nDone."


def test_json_fence_fallback():
    text = f"Here you go:\n```json\n{json.dumps([_candidate()])}\n```"
    assert len(parse_opportunities(text)) == 1
    assert extract_reasoning(text) == "Here you go:"


def test_missing_or_malformed_blocks_yield_nothing():
    assert parse_opportunities("") == []
    assert parse_opportunities("No opportunities today.") == []
    assert parse_opportunities("<opportunities>[{broken</opportunities>") == []
    assert parse_opportunities('<opportunities>{"title": "x"}</opportunities>') == []


def test_invalid_candidates_are_dropped_individually():
    candidates = [
        _candidate(),
        _candidate(title=""),
        _candidate(buyPrice="400"),
        _candidate(sellPrice=True),
        _candidate(sellSource=None),
        "not an object",
    ]
    text = f"<opportunities>{json.dumps(candidates)}</opportunities>"

    assert [item.title for item in parse_opportunities(text)] == ["LEGO 10294 Titanic"]


def test_profit_mismatch_is_kept_as_reported():
    (opportunity,) = parse_opportunities(
        f"<opportunities>{json.dumps([_candidate(estimatedProfit=20000)])}</opportunities>"
    )
    assert opportunity.estimated_profit == 20_000
    assert opportunity.arithmetic_gap == 8_000


def test_coerce_normalizes_optional_fields():
    opportunity = coerce_opportunity(
        _candidate(
            buyPrice=399.6,
            sellPriceType="guess",
            confidence=140,
            fees="free",
            riskNotes=["Seller new", 3],
            buyUrl=None,
        )
    )

    assert opportunity.buy_price == 400
    assert opportunity.sell_price_type is SellPriceType.ESTIMATED
    assert opportunity.confidence == 100
    assert opportunity.fees.total == 0
    assert opportunity.risk_notes == ["Seller new", "3"]
    assert opportunity.buy_url == ""


def test_payload_uses_camel_case_keys():
    opportunity = coerce_opportunity(_candidate())
    payload = opportunity.model_dump(by_alias=True, mode="json")

    assert payload["buyPrice"] == 40_000
    assert payload["sellPriceType"] == "verified"
    assert payload["fees"]["platformFee"] == 8_000
    assert payload["riskNotes"] == []
