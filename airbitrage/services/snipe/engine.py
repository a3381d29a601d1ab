"""Bounded tool-use verification loop over pre-qualified leads."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from airbitrage.clients.llm import LLMClient, LLMError, LLMResponse, ToolSpec, ToolUseBlock
from airbitrage.config import Settings, settings
from airbitrage.models.opportunity import ParsedOpportunity
from airbitrage.models.run import ProgressCallback, ProgressType, emit
from airbitrage.observability.metrics import metrics
from airbitrage.services.budget.ledger import BudgetLedger
from airbitrage.services.snipe.parsing import extract_reasoning, parse_opportunities
from airbitrage.services.snipe.prompts import build_snipe_message
from pipelines.scout.leads import QualifiedLead
from pipelines.scout.resale import search_sold_prices
from pipelines.scout.sources.base import WebSearchClient

logger = logging.getLogger(__name__)

SEARCH_SOLD_PRICES_TOOL = ToolSpec(
    name="search_sold_prices",
    description=(
        "Search recent sold and active marketplace listings for one specific product and return "
        "prices found on item listing pages. Use the exact product name, model and edition."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "product_name": {
                "type": "string",
                "description": "Exact product name, e.g. 'Sony WH-1000XM5 headphones'.",
            }
        },
        "required": ["product_name"],
    },
)
FINAL_ANSWER_NUDGE = "Tool limit reached. Respond now with your final <opportunities> block."


class SnipeError(RuntimeError):
    """The model call failed; carries the usage already spent in this run."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        tool_calls: int = 0,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.tool_calls = tool_calls


@dataclass
class SnipeOutcome:
    opportunities: list[ParsedOpportunity] = field(default_factory=list)
    reasoning: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    tool_calls: int = 0
    llm_calls: int = 0
    stop_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class SnipeSettings:
    model: str
    max_tokens: int
    max_tool_iterations: int
    tool_result_max_chars: int

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SnipeSettings":
        config = config or settings
        return cls(
            model=config.snipe_model,
            max_tokens=config.snipe_max_tokens,
            max_tool_iterations=config.snipe_max_tool_iterations,
            tool_result_max_chars=config.tool_result_max_chars,
        )


class SnipeEngine:
    """Verifies leads with the model, letting it research prices through one search tool.

    The loop ends when the model stops asking for tools, when the tool-round cap is
    reached, or when a per-run or daily budget ceiling is hit. Usage is recorded in
    the ledger after every model call.
    """

    def __init__(
        self,
        *,
        client: LLMClient,
        ledger: BudgetLedger,
        search_client: WebSearchClient | None = None,
        options: SnipeSettings | None = None,
    ) -> None:
        self._client = client
        self._ledger = ledger
        self._search_client = search_client
        self._options = options or SnipeSettings.from_settings()

    @property
    def tools(self) -> list[ToolSpec]:
        return [SEARCH_SOLD_PRICES_TOOL] if self._search_client is not None else []

    async def verify(
        self,
        *,
        agent_type: str,
        system_prompt: str,
        leads: Sequence[QualifiedLead],
        on_progress: ProgressCallback | None = None,
    ) -> SnipeOutcome:
        budget = self._ledger.load_config()
        outcome = SnipeOutcome()
        messages: list[dict[str, Any]] = [{"role": "user", "content": build_snipe_message(leads)}]
        last_response: LLMResponse | None = None
        tool_rounds = 0

        while True:
            if outcome.total_tokens >= budget.per_run_token_limit:
                outcome.stop_reason = "per_run_tokens"
                emit(
                    on_progress,
                    ProgressType.BUDGET_WARNING,
                    f"Per-run token limit reached ({outcome.total_tokens:,} tokens)",
                )
                break
            if outcome.tool_calls >= budget.per_run_tool_call_limit:
                outcome.stop_reason = "per_run_tool_calls"
                emit(
                    on_progress,
                    ProgressType.BUDGET_WARNING,
                    f"Per-run tool call limit reached ({outcome.tool_calls} calls)",
                )
                break
            if outcome.llm_calls and not (await self._ledger.acheck_budget(budget)).allowed:
                outcome.stop_reason = "daily_tokens"
                emit(on_progress, ProgressType.BUDGET_WARNING, "Daily token limit reached mid-run")
                break

            if outcome.llm_calls:
                emit(
                    on_progress,
                    ProgressType.CALLING_CLAUDE,
                    f"Calling model (loop {outcome.llm_calls + 1})…",
                    loop=outcome.llm_calls + 1,
                    tokens=outcome.total_tokens,
                    toolCalls=outcome.tool_calls,
                )
            response = await self._call_model(agent_type, system_prompt, messages, outcome)
            last_response = response

            if not response.wants_tool_use:
                outcome.stop_reason = "end_turn"
                break
            if tool_rounds >= self._options.max_tool_iterations:
                outcome.stop_reason = "tool_iterations"
                emit(
                    on_progress,
                    ProgressType.BUDGET_WARNING,
                    f"Tool iteration cap reached ({tool_rounds} rounds)",
                )
                break

            messages.append({"role": "assistant", "content": [block.to_param() for block in response.content]})
            results: list[dict[str, Any]] = []
            for tool_use in response.tool_uses:
                outcome.tool_calls += 1
                emit(
                    on_progress,
                    ProgressType.TOOL_CALL,
                    f"Using tool: {tool_use.name}",
                    tool=tool_use.name,
                    input=tool_use.input,
                )
                content, is_error = await self._execute_tool(tool_use)
                results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": tool_use.id,
                        "content": content,
                        "is_error": is_error,
                    }
                )
                emit(
                    on_progress,
                    ProgressType.TOOL_RESULT,
                    f"Tool {tool_use.name} {'failed' if is_error else 'completed'}",
                    tool=tool_use.name,
                    isError=is_error,
                    resultLength=len(content),
                )
            tool_rounds += 1
            if tool_rounds >= self._options.max_tool_iterations:
                results.append({"type": "text", "text": FINAL_ANSWER_NUDGE})
            messages.append({"role": "user", "content": results})

        text = last_response.text if last_response is not None else ""
        outcome.opportunities = parse_opportunities(text)
        outcome.reasoning = extract_reasoning(text)
        metrics.increment("snipe.tokens", value=outcome.total_tokens, tags={"agent_type": agent_type})
        metrics.increment("snipe.tool_calls", value=outcome.tool_calls, tags={"agent_type": agent_type})
        logger.info(
            "snipe.completed",
            extra={
                "agent_type": agent_type,
                "leads": len(leads),
                "opportunities": len(outcome.opportunities),
                "llm_calls": outcome.llm_calls,
                "tool_calls": outcome.tool_calls,
                "stop_reason": outcome.stop_reason,
            },
        )
        return outcome

    async def _call_model(
        self,
        agent_type: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        outcome: SnipeOutcome,
    ) -> LLMResponse:
        try:
            response = await self._client.create_message(
                model=self._options.model,
                max_tokens=self._options.max_tokens,
                system=system_prompt,
                messages=messages,
                tools=self.tools or None,
            )
        except LLMError as exc:
            metrics.increment("snipe.errors", tags={"agent_type": agent_type, "code": exc.code})
            logger.error("snipe.llm_failed", extra={"agent_type": agent_type, "code": exc.code})
            raise SnipeError(
                str(exc),
                code=exc.code,
                input_tokens=outcome.input_tokens,
                output_tokens=outcome.output_tokens,
                tool_calls=outcome.tool_calls,
            ) from exc

        outcome.llm_calls += 1
        outcome.input_tokens += response.usage.input_tokens
        outcome.output_tokens += response.usage.output_tokens
        pending_tools = len(response.tool_uses) if response.wants_tool_use else 0
        await self._ledger.arecord_usage(
            agent_type,
            response.usage.input_tokens,
            response.usage.output_tokens,
            pending_tools,
        )
        return response

    async def _execute_tool(self, tool_use: ToolUseBlock) -> tuple[str, bool]:
        if tool_use.name != SEARCH_SOLD_PRICES_TOOL.name or self._search_client is None:
            return f'Error: Unknown tool "{tool_use.name}"', True
        product_name = tool_use.input.get("product_name")
        if not isinstance(product_name, str) or not product_name.strip():
            return "Error: product_name is required", True

        logger.info("snipe.tool_call", extra={"tool": tool_use.name, "product": product_name})
        content = await search_sold_prices(self._search_client, product_name)
        limit = self._options.tool_result_max_chars
        if len(content) > limit:
            content = f"{content[:limit]}\n\n[... truncated - result was {len(content):,} chars]"
        return content, False
