import pytest

from airbitrage.models.agent import ACTIVE_AGENTS, AgentType, RunOverrides
from pipelines.scout.plans import (
    DEFAULT_CRAIGSLIST_CATEGORIES,
    DEFAULT_CRYPTO_PAIRS,
    MAX_SEARCH_QUERIES,
    AuctionsPlan,
    BooksPlan,
    CollectiblesPlan,
    CryptoPlan,
    ListingsPlan,
    RetailPlan,
    TicketsPlan,
    build_scout_plan,
)


@pytest.mark.parametrize(
    ("agent_type", "plan_type", "min_profit", "min_spread"),
    [
        (AgentType.LISTINGS, ListingsPlan, 2000, 25.0),
        (AgentType.AUCTIONS, AuctionsPlan, 2000, 20.0),
        (AgentType.RETAIL, RetailPlan, 1500, 35.0),
        (AgentType.TICKETS, TicketsPlan, 2000, 20.0),
        (AgentType.COLLECTIBLES, CollectiblesPlan, 1500, 20.0),
        (AgentType.BOOKS, BooksPlan, 800, 35.0),
        (AgentType.CRYPTO, CryptoPlan, 0, 0.15),
    ],
)
def test_default_thresholds(agent_type, plan_type, min_profit, min_spread):
    plan = build_scout_plan(agent_type)

    assert isinstance(plan, plan_type)
    assert plan.agent_type is agent_type
    assert plan.min_profit_cents == min_profit
    assert plan.min_spread_percent == min_spread


def test_queries_to_run_are_capped():
    plan = build_scout_plan(AgentType.RETAIL)
    assert len(plan.search_queries) > MAX_SEARCH_QUERIES
    assert len(plan.queries_to_run) == MAX_SEARCH_QUERIES


def test_listings_plan_uses_region_only_when_given():
    default = build_scout_plan(AgentType.LISTINGS)
    assert default.craigslist.cities == ()
    assert default.craigslist.categories == DEFAULT_CRAIGSLIST_CATEGORIES

    plan = build_scout_plan(
        AgentType.LISTINGS,
        RunOverrides(region=" San Diego ", categories=["bikes", " "], min_profit_cents=5000),
    )
    assert plan.craigslist.cities == ("sandiego",)
    assert plan.craigslist.queries == ("bikes",)
    assert plan.search_queries == ("site:offerup.com/item bikes for sale", "site:mercari.com/item bikes")
    assert plan.min_profit_cents == 5000


def test_crypto_plan_overrides():
    plan = build_scout_plan(AgentType.CRYPTO)
    assert plan.pairs == DEFAULT_CRYPTO_PAIRS
    assert plan.search_queries == ()

    custom = build_scout_plan(AgentType.CRYPTO, RunOverrides(pairs=["BTC/USD"], min_spread_percent=0))
    assert custom.pairs == ("BTC/USD",)
    assert custom.min_spread_percent == 0


def test_ticket_event_types_lead_the_defaults():
    plan = build_scout_plan(AgentType.TICKETS, RunOverrides(event_types=["NBA Finals"]))
    assert plan.search_queries[:3] == (
        "NBA Finals tickets for sale this month",
        "NBA Finals tickets face value below resale",
        "NBA Finals tickets cheap deal 2025",
    )
    assert len(plan.search_queries) == 3 + len(build_scout_plan(AgentType.TICKETS).search_queries)


def test_ticket_event_types_survive_the_query_cap():
    plan = build_scout_plan(AgentType.TICKETS, RunOverrides(eventTypes=["Coldplay", "  "]))

    assert len(plan.queries_to_run) == MAX_SEARCH_QUERIES
    assert [query for query in plan.queries_to_run if "Coldplay" in query] == [
        "Coldplay tickets for sale this month",
        "Coldplay tickets face value below resale",
        "Coldplay tickets cheap deal 2025",
    ]


def test_overrides_accept_camel_case_payloads():
    overrides = RunOverrides.model_validate({"minProfitCents": 2500, "eventTypes": ["UFC"], "unknown": 1})
    assert overrides.min_profit_cents == 2500
    assert overrides.event_types == ["UFC"]


def test_inactive_agents_are_not_advertised():
    assert AgentType.CRYPTO not in ACTIVE_AGENTS
    assert AgentType.TICKETS not in ACTIVE_AGENTS
    assert AgentType.RETAIL in ACTIVE_AGENTS
