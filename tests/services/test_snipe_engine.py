import json

import pytest

from airbitrage.clients.llm import LLMProviderError, LLMResponse, LLMUsage, ToolUseBlock
from airbitrage.models.agent import AgentType
from airbitrage.models.opportunity import LeadConfidence, SellPriceType
from airbitrage.models.run import ProgressType
from airbitrage.services.snipe import engine as engine_module
from airbitrage.services.snipe.engine import (
    FINAL_ANSWER_NUDGE,
    SEARCH_SOLD_PRICES_TOOL,
    SnipeEngine,
    SnipeError,
    SnipeSettings,
)
from airbitrage.services.snipe.prompts import TOOL_GUIDANCE, build_snipe_message, system_prompt_for
from pipelines.scout.leads import QualifiedLead
from tests.helpers.metrics_stub import StubMetrics
from tests.helpers.stubs import (
    StubLLMClient,
    StubSearchClient,
    memory_ledger,
    text_response,
    tool_response,
)

LEAD = QualifiedLead(
    title="Herman Miller Aeron Size B",
    description="Lightly used, all adjustments work.",
    buy_price=25_000,
    buy_source="craigslist-sfbay",
    buy_url="https://sfbay.craigslist.org/sfc/fur/d/aeron/7712345678.html",
    sell_price_estimate=60_000,
    sell_source="eBay",
    sell_url="https://www.ebay.com/itm/3344",
    sell_price_type=SellPriceType.VERIFIED,
    estimated_spread=35_000,
    spread_percent=140.0,
    confidence=LeadConfidence.HIGH,
    category="furniture",
)

FINAL_TEXT = "Verified one chair.\n<opportunities>" + json.dumps(
    [
        {
            "title": "Herman Miller Aeron Size B",
            "buyPrice": 25000,
            "buySource": "Craigslist",
            "sellPrice": 55000,
            "sellSource": "eBay",
            "sellPriceType": "verified",
            "estimatedProfit": 19000,
            "fees": {"platformFee": 7000, "shippingCost": 4000, "total": 11000},
            "confidence": 80,
        }
    ]
) + "</opportunities>"

SOLD_RESULTS = [
    {"url": "https://www.ebay.com/itm/1", "title": "Aeron Size B $540", "content": "Sold $560"},
]


def _engine(llm, ledger, *, search=None, max_tool_iterations=5) -> SnipeEngine:
    return SnipeEngine(
        client=llm,
        ledger=ledger,
        search_client=search,
        options=SnipeSettings(
            model="test-model",
            max_tokens=1024,
            max_tool_iterations=max_tool_iterations,
            tool_result_max_chars=3000,
        ),
    )


async def _verify(engine: SnipeEngine, events: list | None = None):
    return await engine.verify(
        agent_type="listings",
        system_prompt=system_prompt_for(AgentType.LISTINGS, with_tools=bool(engine.tools)),
        leads=[LEAD],
        on_progress=events.append if events is not None else None,
    )


@pytest.mark.asyncio
async def test_single_pass_without_tools():
    ledger = memory_ledger()
    llm = StubLLMClient([text_response(FINAL_TEXT)])

    outcome = await _verify(_engine(llm, ledger))

    assert outcome.stop_reason == "end_turn"
    assert outcome.llm_calls == 1
    assert outcome.tool_calls == 0
    (opportunity,) = outcome.opportunities
    assert opportunity.estimated_profit == 19_000
    assert outcome.reasoning == "Verified one chair."
    assert llm.calls[0]["tools"] is None
    assert TOOL_GUIDANCE not in llm.calls[0]["system"]
    assert ledger.daily_usage().total_tokens == 150


@pytest.mark.asyncio
async def test_tool_loop_feeds_search_results_back():
    ledger = memory_ledger()
    search = StubSearchClient(lambda query: SOLD_RESULTS)
    llm = StubLLMClient([tool_response("Herman Miller Aeron Size B"), text_response(FINAL_TEXT)])
    events: list = []

    outcome = await _verify(_engine(llm, ledger, search=search), events)

    assert outcome.tool_calls == 1
    assert outcome.llm_calls == 2
    assert outcome.input_tokens == 200
    assert search.queries == ['"Herman Miller Aeron Size B" sold price ebay']
    assert llm.calls[0]["tools"] == [SEARCH_SOLD_PRICES_TOOL]

    follow_up = llm.calls[1]["messages"]
    assert follow_up[1]["role"] == "assistant"
    assert follow_up[1]["content"][1]["type"] == "tool_use"
    (tool_result,) = follow_up[2]["content"]
    assert tool_result["tool_use_id"] == "toolu_1"
    assert tool_result["is_error"] is False
    assert "Median listing price" in tool_result["content"]

    assert [run.tool_calls for run in ledger.daily_usage().runs] == [1, 0]
    types = [event.type for event in events]
    assert ProgressType.TOOL_CALL in types
    assert ProgressType.TOOL_RESULT in types


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_as_error():
    ledger = memory_ledger()
    search = StubSearchClient({})
    unknown = LLMResponse(
        content=[ToolUseBlock(id="toolu_9", name="delete_everything", input={})],
        stop_reason="tool_use",
        usage=LLMUsage(input_tokens=80, output_tokens=10),
    )
    llm = StubLLMClient([unknown, text_response("Nothing verified.\n<opportunities>[]</opportunities>")])

    outcome = await _verify(_engine(llm, ledger, search=search))

    (tool_result,) = llm.calls[1]["messages"][2]["content"]
    assert tool_result["is_error"] is True
    assert tool_result["content"] == 'Error: Unknown tool "delete_everything"'
    assert outcome.opportunities == []
    assert search.queries == []


@pytest.mark.asyncio
async def test_final_round_gets_a_nudge_and_loop_stops_at_cap():
    ledger = memory_ledger()
    search = StubSearchClient(lambda query: SOLD_RESULTS)
    llm = StubLLMClient(
        [
            tool_response("Aeron", tool_id="toolu_1"),
            tool_response("Aeron B", tool_id="toolu_2"),
            tool_response("Aeron C", tool_id="toolu_3"),
        ]
    )

    outcome = await _verify(_engine(llm, ledger, search=search, max_tool_iterations=2))

    assert outcome.stop_reason == "tool_iterations"
    assert outcome.llm_calls == 3
    assert outcome.tool_calls == 2
    last_user_turn = llm.calls[2]["messages"][-1]["content"]
    assert last_user_turn[-1] == {"type": "text", "text": FINAL_ANSWER_NUDGE}
    assert outcome.opportunities == []


@pytest.mark.asyncio
async def test_per_run_token_limit_stops_the_loop():
    ledger = memory_ledger(per_run_token_limit=100)
    search = StubSearchClient(lambda query: SOLD_RESULTS)
    llm = StubLLMClient([tool_response("Aeron", input_tokens=90, output_tokens=20), text_response(FINAL_TEXT)])
    events: list = []

    outcome = await _verify(_engine(llm, ledger, search=search), events)

    assert outcome.stop_reason == "per_run_tokens"
    assert outcome.llm_calls == 1
    assert any(
        event.type is ProgressType.BUDGET_WARNING and event.message.startswith("Per-run token limit reached")
        for event in events
    )


@pytest.mark.asyncio
async def test_per_run_tool_call_limit_stops_the_loop():
    ledger = memory_ledger(per_run_tool_call_limit=1)
    search = StubSearchClient(lambda query: SOLD_RESULTS)
    llm = StubLLMClient([tool_response("Aeron"), text_response(FINAL_TEXT)])

    outcome = await _verify(_engine(llm, ledger, search=search))

    assert outcome.stop_reason == "per_run_tool_calls"
    assert outcome.tool_calls == 1
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_daily_limit_reached_mid_run():
    ledger = memory_ledger(daily_token_limit=100)
    search = StubSearchClient(lambda query: SOLD_RESULTS)
    llm = StubLLMClient([tool_response("Aeron", input_tokens=90, output_tokens=20), text_response(FINAL_TEXT)])

    outcome = await _verify(_engine(llm, ledger, search=search))

    assert outcome.stop_reason == "daily_tokens"
    assert outcome.llm_calls == 1


@pytest.mark.asyncio
async def test_model_error_carries_partial_usage(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(engine_module, "metrics", stub)
    ledger = memory_ledger()
    search = StubSearchClient(lambda query: SOLD_RESULTS)
    llm = StubLLMClient([tool_response("Aeron"), LLMProviderError("Anthropic API error: 529", code="LLM_PROVIDER_ERROR")])

    with pytest.raises(SnipeError) as exc_info:
        await _verify(_engine(llm, ledger, search=search))

    error = exc_info.value
    assert error.code == "LLM_PROVIDER_ERROR"
    assert (error.input_tokens, error.output_tokens, error.tool_calls) == (100, 20, 1)
    assert ledger.daily_usage().total_tokens == 120
    assert stub.names("counter")[0] == "snipe.errors"


def test_snipe_message_lists_every_lead():
    message = build_snipe_message([LEAD, LEAD])

    assert message.startswith("Here are 2 pre-screened leads")
    assert "[Lead 2]" in message
    assert "Buy: $250.00 on craigslist-sfbay" in message
    assert "Est. Sell: $600.00 on eBay (verified)" in message
    assert "Spread: $350.00 (140%)" in message


def test_system_prompt_mentions_tool_only_when_available():
    assert TOOL_GUIDANCE in system_prompt_for(AgentType.BOOKS, with_tools=True)
    assert TOOL_GUIDANCE not in system_prompt_for(AgentType.BOOKS, with_tools=False)
