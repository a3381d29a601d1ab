"""Daily token budget ledger backed by two small JSON documents.

Usage lives in ``token-usage.json`` keyed by UTC date and resets when the stored date
is not today. Limits live in ``budget-config.json`` and are merged over the defaults.
Writes are last-writer-wins; two runs recording at the same instant can lose one entry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, date, datetime
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from airbitrage.config import Settings, settings
from airbitrage.models.run import estimate_cost
from airbitrage.observability.metrics import metrics

logger = logging.getLogger(__name__)

USAGE_FILENAME = "token-usage.json"
CONFIG_FILENAME = "budget-config.json"


class BudgetError(RuntimeError):
    """Base exception for budget enforcement."""

    def __init__(self, message: str, code: str = "BUDGET_ERROR") -> None:
        super().__init__(message)
        self.code = code


class BudgetExceededError(BudgetError):
    """Raised at API boundaries when today's token ceiling is already spent."""

    def __init__(self, status: "BudgetStatus") -> None:
        super().__init__(
            f"Daily token limit reached ({status.used:,} / {status.limit:,} tokens used today).",
            code="429_DAILY_BUDGET",
        )
        self.status = status


@dataclass(frozen=True)
class BudgetConfig:
    daily_token_limit: int
    per_run_token_limit: int
    per_run_tool_call_limit: int

    @classmethod
    def defaults(cls, config: Settings | None = None) -> "BudgetConfig":
        config = config or settings
        return cls(
            daily_token_limit=config.daily_token_limit,
            per_run_token_limit=config.per_run_token_limit,
            per_run_tool_call_limit=config.per_run_tool_call_limit,
        )

    def to_payload(self) -> dict[str, int]:
        return {
            "dailyTokenLimit": self.daily_token_limit,
            "perRunTokenLimit": self.per_run_token_limit,
            "perRunToolCallLimit": self.per_run_tool_call_limit,
        }


_CONFIG_KEYS = {
    "dailyTokenLimit": "daily_token_limit",
    "perRunTokenLimit": "per_run_token_limit",
    "perRunToolCallLimit": "per_run_tool_call_limit",
}


@dataclass(frozen=True)
class RunUsageEntry:
    agent_type: str
    started_at: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    tool_calls: int


@dataclass
class DailyUsage:
    date: str
    total_tokens: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    runs: list[RunUsageEntry] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "totalTokens": self.total_tokens,
            "totalInputTokens": self.total_input_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "runs": [
                {
                    "agentType": run.agent_type,
                    "startedAt": run.started_at,
                    "inputTokens": run.input_tokens,
                    "outputTokens": run.output_tokens,
                    "totalTokens": run.total_tokens,
                    "toolCalls": run.tool_calls,
                }
                for run in self.runs
            ],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DailyUsage":
        runs = [
            RunUsageEntry(
                agent_type=str(run.get("agentType", "")),
                started_at=str(run.get("startedAt", "")),
                input_tokens=int(run.get("inputTokens", 0)),
                output_tokens=int(run.get("outputTokens", 0)),
                total_tokens=int(run.get("totalTokens", 0)),
                tool_calls=int(run.get("toolCalls", 0)),
            )
            for run in payload.get("runs", [])
            if isinstance(run, dict)
        ]
        return cls(
            date=str(payload["date"]),
            total_tokens=int(payload.get("totalTokens", 0)),
            total_input_tokens=int(payload.get("totalInputTokens", 0)),
            total_output_tokens=int(payload.get("totalOutputTokens", 0)),
            runs=runs,
        )


@dataclass(frozen=True)
class BudgetStatus:
    allowed: bool
    remaining: int
    used: int
    limit: int
    runs_today: int

    def to_payload(self) -> dict[str, Any]:
        return _camelize(asdict(self))


def _camelize(payload: dict[str, Any]) -> dict[str, Any]:
    def convert(key: str) -> str:
        head, *rest = key.split("_")
        return head + "".join(part.title() for part in rest)

    return {convert(key): value for key, value in payload.items()}


class UsageRepository(Protocol):
    """Persistence contract for the usage ledger and budget configuration."""

    def read_usage(self) -> dict[str, Any] | None:
        ...

    def write_usage(self, payload: dict[str, Any]) -> None:
        ...

    def read_config(self) -> dict[str, Any] | None:
        ...

    def write_config(self, payload: dict[str, Any]) -> None:
        ...


class JsonFileUsageRepository:
    """Flat-file repository under the configured data directory."""

    def __init__(self, data_dir: Path | str) -> None:
        self._data_dir = Path(data_dir)

    @property
    def usage_path(self) -> Path:
        return self._data_dir / USAGE_FILENAME

    @property
    def config_path(self) -> Path:
        return self._data_dir / CONFIG_FILENAME

    def read_usage(self) -> dict[str, Any] | None:
        return self._read(self.usage_path)

    def write_usage(self, payload: dict[str, Any]) -> None:
        self._write(self.usage_path, payload)

    def read_config(self) -> dict[str, Any] | None:
        return self._read(self.config_path)

    def write_config(self, payload: dict[str, Any]) -> None:
        self._write(self.config_path, payload)

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("budget.file_corrupt", extra={"path": str(path)})
            return None
        return payload if isinstance(payload, dict) else None

    def _write(self, path: Path, payload: dict[str, Any]) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        # Readers on other threads never see a half-written document.
        staging = path.with_name(f".{path.name}.tmp")
        staging.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        staging.replace(path)


class InMemoryUsageRepository:
    """Repository used for tests and ephemeral deployments."""

    def __init__(self) -> None:
        self.usage: dict[str, Any] | None = None
        self.config: dict[str, Any] | None = None

    def read_usage(self) -> dict[str, Any] | None:
        return json.loads(json.dumps(self.usage)) if self.usage is not None else None

    def write_usage(self, payload: dict[str, Any]) -> None:
        self.usage = json.loads(json.dumps(payload))

    def read_config(self) -> dict[str, Any] | None:
        return dict(self.config) if self.config is not None else None

    def write_config(self, payload: dict[str, Any]) -> None:
        self.config = dict(payload)


def _utc_today() -> date:
    return datetime.now(UTC).date()


class BudgetLedger:
    """Daily token accounting plus the configurable per-day and per-run ceilings."""

    def __init__(
        self,
        repository: UsageRepository,
        *,
        defaults: BudgetConfig | None = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._repository = repository
        self._defaults = defaults or BudgetConfig.defaults()
        self._today = today
        self._lock = Lock()

    def load_config(self) -> BudgetConfig:
        stored = self._repository.read_config() or {}
        overrides = {
            field_name: int(stored[key])
            for key, field_name in _CONFIG_KEYS.items()
            if isinstance(stored.get(key), (int, float)) and not isinstance(stored.get(key), bool)
        }
        return replace(self._defaults, **overrides)

    def save_config(self, config: BudgetConfig) -> BudgetConfig:
        with self._lock:
            self._repository.write_config(config.to_payload())
        logger.info("budget.config_saved", extra=config.to_payload())
        return config

    def update_config(self, changes: dict[str, Any]) -> BudgetConfig:
        """Apply a partial update; only numeric values for known limits are honored."""
        current = self.load_config()
        overrides = {
            _CONFIG_KEYS[key]: int(value)
            for key, value in changes.items()
            if key in _CONFIG_KEYS and isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        return self.save_config(replace(current, **overrides))

    def daily_usage(self) -> DailyUsage:
        today = self._today().isoformat()
        stored = self._repository.read_usage()
        if not stored or stored.get("date") != today:
            return DailyUsage(date=today)
        try:
            return DailyUsage.from_payload(stored)
        except (KeyError, TypeError, ValueError):
            logger.warning("budget.usage_reset_corrupt", extra={"date": today})
            return DailyUsage(date=today)

    def check_budget(self, config: BudgetConfig | None = None) -> BudgetStatus:
        """``allowed`` is true exactly when today's total is below the daily ceiling."""
        config = config or self.load_config()
        usage = self.daily_usage()
        return BudgetStatus(
            allowed=usage.total_tokens < config.daily_token_limit,
            remaining=max(0, config.daily_token_limit - usage.total_tokens),
            used=usage.total_tokens,
            limit=config.daily_token_limit,
            runs_today=len(usage.runs),
        )

    def ensure_budget(self) -> BudgetStatus:
        status = self.check_budget()
        if not status.allowed:
            metrics.increment("budget.exceeded")
            raise BudgetExceededError(status)
        return status

    def record_usage(
        self,
        agent_type: str,
        input_tokens: int,
        output_tokens: int,
        tool_calls: int = 0,
    ) -> DailyUsage:
        """Append one LLM call to today's ledger. Called after every call, not per run."""
        with self._lock:
            usage = self.daily_usage()
            total = input_tokens + output_tokens
            usage.total_tokens += total
            usage.total_input_tokens += input_tokens
            usage.total_output_tokens += output_tokens
            usage.runs.append(
                RunUsageEntry(
                    agent_type=agent_type,
                    started_at=datetime.now(UTC).isoformat(),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=total,
                    tool_calls=tool_calls,
                )
            )
            self._repository.write_usage(usage.to_payload())
        logger.info(
            "budget.recorded",
            extra={
                "agent_type": agent_type,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "daily_total": usage.total_tokens,
            },
        )
        return usage

    async def arecord_usage(
        self,
        agent_type: str,
        input_tokens: int,
        output_tokens: int,
        tool_calls: int = 0,
    ) -> DailyUsage:
        """Same as ``record_usage`` but the file round-trip runs on a worker thread."""
        return await asyncio.to_thread(self.record_usage, agent_type, input_tokens, output_tokens, tool_calls)

    async def acheck_budget(self, config: BudgetConfig | None = None) -> BudgetStatus:
        return await asyncio.to_thread(self.check_budget, config)

    def summary(self) -> dict[str, Any]:
        config = self.load_config()
        status = self.check_budget(config)
        usage = self.daily_usage()
        return {
            "config": config.to_payload(),
            "status": {
                **status.to_payload(),
                "estimatedCostToday": estimate_cost(usage.total_input_tokens, usage.total_output_tokens),
            },
            "usage": usage.to_payload(),
        }


_LEDGER_INSTANCE: BudgetLedger | None = None


def get_budget_ledger() -> BudgetLedger:
    """Singleton accessor used by API routes."""
    global _LEDGER_INSTANCE  # noqa: PLW0603
    if _LEDGER_INSTANCE is None:
        _LEDGER_INSTANCE = BudgetLedger(JsonFileUsageRepository(settings.data_path))
    return _LEDGER_INSTANCE
