"""Run progress events and terminal run results."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import Field

from airbitrage.models.opportunity import CamelModel, ParsedOpportunity


class ProgressType(str, Enum):
    QUEUED = "queued"
    STARTED = "started"
    CALLING_CLAUDE = "calling_claude"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    BUDGET_WARNING = "budget_warning"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    type: ProgressType
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value, "message": self.message}
        if self.data:
            payload["data"] = self.data
        return payload


ProgressCallback = Callable[[ProgressEvent], None]


def emit(callback: ProgressCallback | None, event_type: ProgressType, message: str, **data: Any) -> None:
    if callback is not None:
        callback(ProgressEvent(type=event_type, message=message, data=data))


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    """Dollar estimate at $3 per million input and $15 per million output tokens."""
    return (input_tokens / 1_000_000) * 3 + (output_tokens / 1_000_000) * 15


class ScoutStats(CamelModel):
    leads_found: int = 0
    leads_qualified: int = 0
    sources_checked: list[str] = Field(default_factory=list)
    diagnostics: list[dict[str, Any]] = Field(default_factory=list)


class RunResult(CamelModel):
    """Terminal outcome of a scout-then-snipe run.

    ``error`` marks a failed run; ``abort_reason`` marks a run refused by the budget.
    """

    success: bool
    opportunities: list[ParsedOpportunity] = Field(default_factory=list)
    reasoning: str = ""
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tool_calls: int = 0
    estimated_cost: float = 0.0
    scout_stats: ScoutStats = Field(default_factory=ScoutStats)
    error: str | None = None
    abort_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def stats_payload(self) -> dict[str, Any]:
        return {
            "totalInputTokens": self.total_input_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "totalToolCalls": self.total_tool_calls,
            "estimatedCost": self.estimated_cost,
            "scoutStats": self.scout_stats.model_dump(by_alias=True),
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "opportunities": [item.model_dump(by_alias=True, mode="json") for item in self.opportunities],
            "reasoning": self.reasoning,
            "stats": self.stats_payload(),
            "error": self.error,
            "abortReason": self.abort_reason,
        }
