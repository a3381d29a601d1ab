"""Agent run endpoints: live SSE stream, synchronous run and queue status."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from airbitrage.config import settings
from airbitrage.core.credentials import ApiKeys, get_api_keys
from airbitrage.models.agent import ACTIVE_AGENTS, AgentType, RunOverrides
from airbitrage.models.run import ProgressEvent, ProgressType, RunResult
from airbitrage.services.budget.ledger import BudgetLedger, get_budget_ledger
from airbitrage.services.queue.agent_queue import (
    AgentQueueError,
    AgentRunQueue,
    get_agent_queue,
)
from pipelines.scout.runner import ScoutSnipeRunner, open_scout_runner

router = APIRouter()
logger = logging.getLogger(__name__)

RunnerFactory = Callable[..., AbstractAsyncContextManager[ScoutSnipeRunner]]


def get_runner_factory() -> RunnerFactory:
    """Dependency returning the context manager that wires a runner to live clients."""
    return open_scout_runner


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_type: str = Field(alias="agentType")
    config: RunOverrides = Field(default_factory=RunOverrides)


def _parse_agent_type(raw: str | None, *, active_only: bool) -> AgentType:
    try:
        agent_type = AgentType(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid agent type: {raw}") from exc
    if active_only and agent_type not in ACTIVE_AGENTS:
        raise HTTPException(status_code=400, detail=f"Invalid agent type: {raw}")
    return agent_type


def _parse_overrides(raw: str | None) -> RunOverrides:
    if not raw:
        return RunOverrides()
    try:
        return RunOverrides.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="config must be a JSON object of run overrides") from exc


def _preflight(keys: ApiKeys, ledger: BudgetLedger) -> None:
    missing = keys.missing(settings.llm_provider)
    if missing:
        raise HTTPException(status_code=400, detail=f"API keys not configured: {', '.join(missing)}")
    ledger.ensure_budget()


def _sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def _stream_run(
    agent_type: AgentType,
    overrides: RunOverrides,
    *,
    keys: ApiKeys,
    queue: AgentRunQueue,
    factory: RunnerFactory,
) -> AsyncIterator[str]:
    events: asyncio.Queue[ProgressEvent] = asyncio.Queue()

    async def execute() -> RunResult:
        async with factory(keys=keys) as runner:
            return await runner.run(agent_type, overrides, events.put_nowait)

    yield _sse("connected", {"agentType": agent_type.value, "message": "Stream connected"})
    try:
        ticket = queue.enqueue(agent_type.value, execute)
    except AgentQueueError as exc:
        yield _sse("error", {"message": str(exc), "code": exc.code})
        yield _sse("done", {"message": "Agent run complete"})
        return

    if ticket.position:
        queue_status = queue.status()
        yield _sse(
            "progress",
            ProgressEvent(
                type=ProgressType.QUEUED,
                message=(
                    f"Queued: {len(queue_status.active)} agent(s) running, "
                    f"you are #{ticket.position} in line…"
                ),
                data={"position": ticket.position, "active": queue_status.active},
            ).to_payload(),
        )

    finished = ticket.finished
    while not finished.done():
        next_event = asyncio.ensure_future(events.get())
        await asyncio.wait({next_event, finished}, return_when=asyncio.FIRST_COMPLETED)
        if next_event.done():
            yield _sse("progress", next_event.result().to_payload())
        else:
            next_event.cancel()
    while not events.empty():
        yield _sse("progress", events.get_nowait().to_payload())

    if finished.cancelled():
        yield _sse("error", {"message": "Agent run was cancelled"})
    elif isinstance(finished.exception(), AgentQueueError):
        exc = finished.exception()
        yield _sse("error", {"message": str(exc), "code": exc.code})
    elif finished.exception() is not None:
        logger.error(
            "runs.stream.failed",
            extra={"agent_type": agent_type.value, "error": repr(finished.exception())},
        )
        yield _sse("error", {"message": f"Agent run failed: {finished.exception()}"})
    else:
        yield _sse("result", finished.result().to_payload())
    yield _sse("done", {"message": "Agent run complete"})


@router.get("/stream")
async def stream_run(
    agent_type: str | None = Query(default=None, alias="agentType"),
    config: str | None = Query(default=None),
    keys: ApiKeys = Depends(get_api_keys),
    ledger: BudgetLedger = Depends(get_budget_ledger),
    queue: AgentRunQueue = Depends(get_agent_queue),
    factory: RunnerFactory = Depends(get_runner_factory),
) -> StreamingResponse:
    """Server-sent events for one run: connected, progress*, result or error, done."""
    parsed_type = _parse_agent_type(agent_type, active_only=True)
    if queue.is_running(parsed_type.value):
        raise HTTPException(status_code=409, detail=f"{parsed_type.value} agent is already running")
    _preflight(keys, ledger)
    overrides = _parse_overrides(config)
    logger.info("runs.stream.opened", extra={"agent_type": parsed_type.value})
    return StreamingResponse(
        _stream_run(parsed_type, overrides, keys=keys, queue=queue, factory=factory),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/agents/run")
async def run_agent(
    payload: RunRequest,
    keys: ApiKeys = Depends(get_api_keys),
    ledger: BudgetLedger = Depends(get_budget_ledger),
    queue: AgentRunQueue = Depends(get_agent_queue),
    factory: RunnerFactory = Depends(get_runner_factory),
) -> dict[str, Any]:
    """Run one agent to completion and return its result.

    Budget and queue conflicts surface through the app-level 429 and 409 handlers.
    """
    agent_type = _parse_agent_type(payload.agent_type, active_only=False)
    _preflight(keys, ledger)

    async def execute() -> RunResult:
        async with factory(keys=keys) as runner:
            return await runner.run(agent_type, payload.config)

    ticket = queue.enqueue(agent_type.value, execute)
    result: RunResult = await ticket.finished
    return result.to_payload()


@router.get("/queue")
async def queue_status(queue: AgentRunQueue = Depends(get_agent_queue)) -> dict[str, Any]:
    return queue.status().to_payload()
