"""Scout-then-snipe runner: free sources and programmatic filters first, one model pass last."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import httpx

from airbitrage.clients.llm import LLMConfigurationError, build_llm_client
from airbitrage.clients.tavily import TavilyClient
from airbitrage.config import Settings, settings
from airbitrage.core.credentials import ApiKeys, load_api_keys
from airbitrage.models.agent import AgentType, RunOverrides
from airbitrage.models.run import (
    ProgressCallback,
    ProgressType,
    RunResult,
    ScoutStats,
    emit,
    estimate_cost,
)
from airbitrage.observability.metrics import metrics
from airbitrage.services.budget.ledger import BudgetLedger, get_budget_ledger
from airbitrage.services.snipe.engine import SnipeEngine, SnipeError
from airbitrage.services.snipe.prompts import system_prompt_for
from pipelines.scout.filter import (
    filter_deal_feed_items,
    filter_leads_with_price_data,
    qualify_collectibles_directly,
)
from pipelines.scout.leads import BookLead, QualifiedLead, ScoutLead, SourceDiagnostic, SourceStatus
from pipelines.scout.plans import (
    EBAY_SEARCH_PLANS,
    AnyScoutPlan,
    AuctionsPlan,
    BooksPlan,
    CollectiblesPlan,
    CryptoPlan,
    ListingsPlan,
    RetailPlan,
    build_scout_plan,
)
from pipelines.scout.resale import batch_book_resale_lookup, batch_resale_lookup
from pipelines.scout.sources.base import SleepFn, WebSearchClient, default_sleep
from pipelines.scout.sources.books import fetch_open_library_books
from pipelines.scout.sources.collectibles import fetch_collectibles
from pipelines.scout.sources.craigslist import fetch_craigslist
from pipelines.scout.sources.crypto import fetch_crypto_quotes
from pipelines.scout.sources.rss import fetch_deal_feeds
from pipelines.scout.sources.search import (
    CRAIGSLIST_FALLBACK_QUERIES,
    ebay_search_terms,
    fetch_gov_auctions,
    search_ebay_listings,
    tavily_batch_search,
)
from pipelines.scout.spread import build_crypto_opportunities, find_crypto_spreads

logger = logging.getLogger("pipelines.scout.runner")

MAX_SNIPE_LEADS = 25
CRAIGSLIST_FALLBACK_THRESHOLD = 5
DAILY_LIMIT_REASON = "Daily token limit reached."


@dataclass
class _ScoutState:
    """Everything gathered during the scout phase of one run."""

    sources_checked: list[str] = field(default_factory=list)
    diagnostics: list[SourceDiagnostic] = field(default_factory=list)
    raw_leads: list[ScoutLead] = field(default_factory=list)
    book_leads: list[BookLead] = field(default_factory=list)
    collectible_leads: list[ScoutLead] = field(default_factory=list)
    feed_item_count: int = 0
    qualified: list[QualifiedLead] = field(default_factory=list)
    deal_leads: list[QualifiedLead] = field(default_factory=list)
    collectible_qualified: list[QualifiedLead] = field(default_factory=list)
    book_qualified: list[QualifiedLead] = field(default_factory=list)

    @property
    def total_leads(self) -> int:
        return len(self.raw_leads) + len(self.deal_leads) + len(self.collectible_leads) + len(self.book_leads)

    def snipe_set(self) -> list[QualifiedLead]:
        merged = [*self.qualified, *self.deal_leads, *self.collectible_qualified, *self.book_qualified]
        return merged[:MAX_SNIPE_LEADS]

    def stats(self, qualified: int) -> ScoutStats:
        return ScoutStats(
            leads_found=self.total_leads,
            leads_qualified=qualified,
            sources_checked=list(self.sources_checked),
            diagnostics=[diagnostic.to_payload() for diagnostic in self.diagnostics],
        )


def _issue_summary(diagnostics: Sequence[SourceDiagnostic]) -> str:
    return "; ".join(
        diagnostic.describe() for diagnostic in diagnostics if diagnostic.status is not SourceStatus.SUCCESS
    )


class ScoutSnipeRunner:
    """Runs one agent's pipeline: scout, filter, then (only if anything qualified) snipe.

    Source failures never abort a run. A model failure does: the result carries the
    error and the usage already recorded.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        search_client: WebSearchClient | None,
        ledger: BudgetLedger,
        snipe_engine: SnipeEngine | None,
        config: Settings | None = None,
        sleep: SleepFn = default_sleep,
    ) -> None:
        self._http = http
        self._search = search_client
        self._ledger = ledger
        self._snipe = snipe_engine
        self._config = config or settings
        self._sleep = sleep

    async def run(
        self,
        agent_type: AgentType,
        overrides: RunOverrides | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> RunResult:
        plan = build_scout_plan(agent_type, overrides)
        emit(on_progress, ProgressType.STARTED, "Scout phase starting - gathering leads from free sources…")

        # Soft timeout: reports the overrun but lets in-flight work finish.
        timeout_handle = asyncio.get_running_loop().call_later(
            self._config.run_timeout_seconds,
            emit,
            on_progress,
            ProgressType.ERROR,
            f"Run timed out after {self._config.run_timeout_seconds / 60:.0f} minutes",
        )
        try:
            with metrics.timer("run.duration_ms", tags={"agent_type": agent_type.value}):
                if isinstance(plan, CryptoPlan):
                    result = await self._run_crypto(plan, on_progress)
                else:
                    result = await self._run_scout_then_snipe(plan, on_progress)
        finally:
            timeout_handle.cancel()
        logger.info(
            "scout.run.completed",
            extra={
                "agent_type": agent_type.value,
                "success": result.success,
                "opportunities": len(result.opportunities),
                "tokens": result.total_tokens,
            },
        )
        return result

    async def _run_crypto(self, plan: CryptoPlan, on_progress: ProgressCallback | None) -> RunResult:
        emit(on_progress, ProgressType.TOOL_CALL, "Fetching live crypto prices from Binance, Coinbase, Kraken…")
        quotes = await fetch_crypto_quotes(
            self._http, plan.pairs, timeout=self._config.exchange_timeout_seconds
        )
        sources_checked = ["Binance API", "Coinbase API", "Kraken API"]
        spreads = find_crypto_spreads(quotes.leads, plan.min_spread_percent)
        exchanges = sorted({quote.exchange for quote in quotes.leads})
        emit(
            on_progress,
            ProgressType.TOOL_RESULT,
            f"Found {len(quotes.leads)} prices across {len(exchanges)} exchanges. {len(spreads)} spreads detected.",
            prices=len(quotes.leads),
            spreads=len(spreads),
        )
        stats = ScoutStats(
            leads_found=len(quotes.leads),
            leads_qualified=len(spreads),
            sources_checked=sources_checked,
            diagnostics=[diagnostic.to_payload() for diagnostic in quotes.diagnostics],
        )
        if not spreads:
            return RunResult(
                success=True,
                reasoning=(
                    f"Checked {len(plan.pairs)} pairs across 3 exchanges. "
                    f"No spreads exceeding {plan.min_spread_percent}% found at this time."
                ),
                scout_stats=stats,
            )

        opportunities = build_crypto_opportunities(spreads)
        emit(
            on_progress,
            ProgressType.COMPLETED,
            f"Found {len(opportunities)} crypto arbitrage opportunities (no model tokens used)",
            opportunities=len(opportunities),
            tokens=0,
        )
        return RunResult(
            success=True,
            opportunities=opportunities,
            reasoning=(
                f"Found {len(spreads)} cross-exchange spreads by comparing live prices from "
                f"{', '.join(exchanges)}."
            ),
            scout_stats=stats,
        )

    async def _scout(self, plan: AnyScoutPlan, on_progress: ProgressCallback | None) -> _ScoutState:
        state = _ScoutState()
        timeout = self._config.source_timeout_seconds

        if isinstance(plan, ListingsPlan):
            emit(on_progress, ProgressType.TOOL_CALL, "Fetching Craigslist RSS feeds across cities…")
            craigslist = await fetch_craigslist(self._http, plan.craigslist, timeout=timeout, sleep=self._sleep)
            state.diagnostics.extend(craigslist.diagnostics)
            state.raw_leads.extend(craigslist.leads)
            cities = len(plan.craigslist.cities) or 5
            state.sources_checked.append(f"Craigslist RSS ({cities} cities)")
            priced = sum(1 for lead in craigslist.leads if lead.has_price)
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Found {len(craigslist.leads)} Craigslist listings, {priced} have prices.",
                total=len(craigslist.leads),
                withPrices=priced,
            )
            if len(craigslist.leads) < CRAIGSLIST_FALLBACK_THRESHOLD:
                emit(
                    on_progress,
                    ProgressType.TOOL_CALL,
                    "Craigslist RSS returned few results - adding web search fallback…",
                )
                fallback = await tavily_batch_search(
                    self._search,
                    CRAIGSLIST_FALLBACK_QUERIES,
                    source_label="Craigslist Fallback",
                    sleep=self._sleep,
                )
                state.diagnostics.extend(fallback.diagnostics)
                state.raw_leads.extend(fallback.leads)
                emit(
                    on_progress,
                    ProgressType.TOOL_RESULT,
                    f"Web search fallback added {len(fallback.leads)} additional Craigslist leads.",
                )

        if isinstance(plan, AuctionsPlan):
            emit(
                on_progress,
                ProgressType.TOOL_CALL,
                "Searching government auction sites (GovDeals, PublicSurplus, GSA)…",
            )
            gov = await fetch_gov_auctions(self._search, sleep=self._sleep)
            state.diagnostics.extend(gov.diagnostics)
            state.raw_leads.extend(gov.leads)
            state.sources_checked.extend(("GovDeals", "PublicSurplus", "GSA Auctions"))
            emit(on_progress, ProgressType.TOOL_RESULT, f"Found {len(gov.leads)} government auction listings.")

        if isinstance(plan, CollectiblesPlan):
            emit(on_progress, ProgressType.TOOL_CALL, "Fetching collectibles data (Discogs, StockX via kicks.dev)…")
            discogs, sneakers = await fetch_collectibles(
                self._http, user_agent=self._config.user_agent, timeout=timeout, sleep=self._sleep
            )
            state.diagnostics.extend((*discogs.diagnostics, *sneakers.diagnostics))
            state.collectible_leads.extend((*discogs.leads, *sneakers.leads))
            state.sources_checked.extend(("Discogs API", "kicks.dev/StockX"))
            state.collectible_qualified = qualify_collectibles_directly(
                state.collectible_leads,
                min_profit_cents=plan.min_profit_cents,
                min_spread_percent=plan.min_spread_percent,
            )
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Found {len(discogs.leads)} vinyl listings + {len(sneakers.leads)} sneaker prices. "
                f"{len(state.collectible_qualified)} clear the profit floor on market data alone.",
                discogs=len(discogs.leads),
                sneakers=len(sneakers.leads),
            )

        if isinstance(plan, BooksPlan):
            emit(on_progress, ProgressType.TOOL_CALL, "Searching Open Library for book data…")
            books = await fetch_open_library_books(self._http, timeout=timeout, sleep=self._sleep)
            state.diagnostics.extend(books.diagnostics)
            state.book_leads.extend(books.leads)
            state.sources_checked.append("Open Library")
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Found {len(books.leads)} books with ISBN data for price comparison.",
            )

        if isinstance(plan, RetailPlan):
            emit(on_progress, ProgressType.TOOL_CALL, "Checking deal feeds (Slickdeals, DealNews, Reddit)…")
            feeds = await fetch_deal_feeds(self._http, timeout=timeout, user_agent=self._config.user_agent)
            state.diagnostics.extend(feeds.diagnostics)
            state.feed_item_count = len(feeds.leads)
            state.sources_checked.extend(("Slickdeals", "DealNews", "r/deals", "r/flipping", "r/buildapcsales"))
            state.deal_leads = filter_deal_feed_items(
                feeds.leads,
                min_discount_percent=plan.min_discount_percent,
                min_profit_cents=plan.min_profit_cents,
            )
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Found {len(feeds.leads)} deal feed items, {len(state.deal_leads)} passed price filter "
                f"({plan.min_discount_percent:.0f}%+ discount).",
                feedItems=len(feeds.leads),
                qualified=len(state.deal_leads),
            )

        queries = plan.queries_to_run
        if queries:
            emit(
                on_progress,
                ProgressType.TOOL_CALL,
                f"Running {len(queries)} targeted web searches…",
                queries=len(queries),
            )
            search = await tavily_batch_search(self._search, queries, sleep=self._sleep)
            state.diagnostics.extend(search.diagnostics)
            state.raw_leads.extend(search.leads)
            state.sources_checked.append("Tavily Search")
            priced = sum(1 for lead in search.leads if lead.has_price)
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Found {len(search.leads)} raw leads from web search. {priced} have extractable prices.",
                leads=len(search.leads),
                withPrices=priced,
            )

        if isinstance(plan, EBAY_SEARCH_PLANS):
            terms = ebay_search_terms(plan.search_queries)
            if terms:
                emit(on_progress, ProgressType.TOOL_CALL, "Searching eBay listings…")
                ebay = await search_ebay_listings(self._search, terms, sleep=self._sleep)
                state.diagnostics.extend(ebay.diagnostics)
                state.raw_leads.extend(ebay.leads)
                state.sources_checked.append("eBay")
                emit(on_progress, ProgressType.TOOL_RESULT, f"Found {len(ebay.leads)} eBay listings.")

        return state

    async def _filter(self, plan: AnyScoutPlan, state: _ScoutState, on_progress: ProgressCallback | None) -> None:
        priced = [lead for lead in state.raw_leads if lead.has_price]
        metrics.increment("scout.leads", value=len(state.raw_leads), tags={"agent_type": plan.agent_type.value})
        emit(
            on_progress,
            ProgressType.TOOL_CALL,
            f"{len(priced)} leads have prices. Running resale price lookups…",
        )
        if priced:
            resale = await batch_resale_lookup(self._search, priced, sleep=self._sleep)
            state.qualified = filter_leads_with_price_data(
                state.raw_leads,
                resale,
                min_profit_cents=plan.min_profit_cents,
                min_spread_percent=plan.min_spread_percent,
            )
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Resale check complete. {len(state.qualified)} leads have confirmed price spreads.",
                qualified=len(state.qualified),
                resaleDataPoints=len(resale),
            )

        if state.book_leads:
            emit(
                on_progress,
                ProgressType.TOOL_CALL,
                f"Running ISBN-based resale lookups for {len(state.book_leads)} books…",
            )
            state.book_qualified = await batch_book_resale_lookup(
                self._search,
                state.book_leads,
                min_profit_cents=plan.min_profit_cents,
                sleep=self._sleep,
            )
            emit(
                on_progress,
                ProgressType.TOOL_RESULT,
                f"Book resale check complete. {len(state.book_qualified)} books have profitable resale prices.",
                qualified=len(state.book_qualified),
            )

    async def _run_scout_then_snipe(self, plan: AnyScoutPlan, on_progress: ProgressCallback | None) -> RunResult:
        state = await self._scout(plan, on_progress)
        await self._filter(plan, state, on_progress)

        leads = state.snipe_set()
        metrics.increment("scout.qualified", value=len(leads), tags={"agent_type": plan.agent_type.value})
        if not leads:
            issues = _issue_summary(state.diagnostics)
            emit(
                on_progress,
                ProgressType.COMPLETED,
                f"Scouted {state.total_leads} leads from {len(state.sources_checked)} sources. "
                f"No profitable spreads found.{f' Issues: {issues}' if issues else ''}",
                leads=state.total_leads,
                qualified=0,
            )
            return RunResult(
                success=True,
                reasoning=(
                    f"Scouted {state.total_leads} leads across {', '.join(state.sources_checked) or 'no sources'}. "
                    f"No leads passed the minimum profit threshold of ${plan.min_profit_cents / 100:.0f}."
                    f"{f' Source issues: {issues}' if issues else ''}"
                ),
                scout_stats=state.stats(0),
            )

        if not (await self._ledger.acheck_budget()).allowed:
            metrics.increment("budget.exceeded", tags={"agent_type": plan.agent_type.value})
            emit(on_progress, ProgressType.BUDGET_WARNING, DAILY_LIMIT_REASON)
            return RunResult(success=False, scout_stats=state.stats(len(leads)), abort_reason=DAILY_LIMIT_REASON)

        if self._snipe is None:
            message = "No LLM API key configured for the snipe phase."
            emit(on_progress, ProgressType.ERROR, message)
            return RunResult(success=False, scout_stats=state.stats(len(leads)), error=message)

        emit(
            on_progress,
            ProgressType.CALLING_CLAUDE,
            f"Snipe phase: sending {len(leads)} pre-qualified leads to the model for verification…",
            leads=len(leads),
        )
        try:
            outcome = await self._snipe.verify(
                agent_type=plan.agent_type.value,
                system_prompt=system_prompt_for(plan.agent_type, with_tools=bool(self._snipe.tools)),
                leads=leads,
                on_progress=on_progress,
            )
        except SnipeError as exc:
            emit(on_progress, ProgressType.ERROR, str(exc))
            return RunResult(
                success=False,
                total_input_tokens=exc.input_tokens,
                total_output_tokens=exc.output_tokens,
                total_tool_calls=exc.tool_calls,
                estimated_cost=estimate_cost(exc.input_tokens, exc.output_tokens),
                scout_stats=state.stats(len(leads)),
                error=str(exc),
            )

        cost = estimate_cost(outcome.input_tokens, outcome.output_tokens)
        emit(
            on_progress,
            ProgressType.COMPLETED,
            f"Verified {len(outcome.opportunities)} opportunities from {len(leads)} leads. "
            f"{outcome.total_tokens} tokens used (${cost:.4f}).",
            opportunities=len(outcome.opportunities),
            tokens=outcome.total_tokens,
            cost=cost,
        )
        return RunResult(
            success=True,
            opportunities=outcome.opportunities,
            reasoning=outcome.reasoning,
            total_input_tokens=outcome.input_tokens,
            total_output_tokens=outcome.output_tokens,
            total_tool_calls=outcome.tool_calls,
            estimated_cost=cost,
            scout_stats=state.stats(len(leads)),
        )


def build_snipe_engine(
    keys: ApiKeys,
    *,
    ledger: BudgetLedger,
    search_client: WebSearchClient | None,
    config: Settings | None = None,
) -> SnipeEngine | None:
    config = config or settings
    try:
        client = build_llm_client(config.llm_provider, keys.llm_key(config.llm_provider))
    except LLMConfigurationError as exc:
        logger.warning("snipe.unavailable", extra={"code": exc.code})
        return None
    return SnipeEngine(client=client, ledger=ledger, search_client=search_client)


@asynccontextmanager
async def open_scout_runner(
    *,
    keys: ApiKeys | None = None,
    ledger: BudgetLedger | None = None,
    config: Settings | None = None,
) -> AsyncIterator[ScoutSnipeRunner]:
    """Runner wired to real HTTP, search and model clients; closes them on exit."""
    config = config or settings
    keys = keys or load_api_keys(config)
    ledger = ledger or get_budget_ledger()
    async with httpx.AsyncClient(follow_redirects=True, timeout=config.source_timeout_seconds) as http:
        search = (
            TavilyClient(keys.tavily_api_key, timeout=config.source_timeout_seconds, http_client=http)
            if keys.tavily_api_key
            else None
        )
        yield ScoutSnipeRunner(
            http=http,
            search_client=search,
            ledger=ledger,
            snipe_engine=build_snipe_engine(keys, ledger=ledger, search_client=search, config=config),
            config=config,
        )


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one scout-then-snipe pipeline and print the result.")
    parser.add_argument(
        "--agent-type",
        required=True,
        choices=[agent_type.value for agent_type in AgentType],
        help="Agent pipeline to run.",
    )
    parser.add_argument("--config", default="{}", help="JSON run overrides, e.g. '{\"categories\": [\"lego\"]}'.")
    return parser.parse_args(argv)


async def _run_cli(agent_type: AgentType, overrides: RunOverrides) -> RunResult:
    def log_progress(event) -> None:
        logger.info("[%s] %s", event.type.value, event.message)

    async with open_scout_runner() as runner:
        return await runner.run(agent_type, overrides, log_progress)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv or sys.argv[1:])
    try:
        overrides = RunOverrides.model_validate(json.loads(args.config))
    except ValueError as exc:
        logger.error("Invalid --config: %s", exc)
        return 2
    result = asyncio.run(_run_cli(AgentType(args.agent_type), overrides))
    print(json.dumps(result.to_payload(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
