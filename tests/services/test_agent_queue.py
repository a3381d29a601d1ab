import asyncio
import gc
import logging

import pytest

from airbitrage.services.queue import agent_queue as queue_module
from airbitrage.services.queue.agent_queue import (
    AgentAlreadyRunningError,
    AgentRunQueue,
    RunReplacedError,
)
from tests.helpers.metrics_stub import StubMetrics


def _gated(result: str):
    gate = asyncio.Event()

    async def execute() -> str:
        await gate.wait()
        return result

    return gate, execute


@pytest.mark.asyncio
async def test_runs_start_immediately_until_the_cap():
    queue = AgentRunQueue(max_concurrent=2)
    gate_a, run_a = _gated("a")
    gate_b, run_b = _gated("b")
    gate_c, run_c = _gated("c")

    first = queue.enqueue("listings", run_a)
    second = queue.enqueue("retail", run_b)
    third = queue.enqueue("books", run_c)

    assert (first.position, second.position, third.position) == (0, 0, 1)
    assert first.started.done() and second.started.done()
    assert not third.started.done()
    assert queue.status().to_payload() == {
        "active": ["listings", "retail"],
        "queued": ["books"],
        "activeCount": 2,
        "queuedCount": 1,
    }

    gate_a.set()
    assert await first.finished == "a"
    await asyncio.wait_for(third.started, timeout=1)
    assert queue.status().active == ["retail", "books"]

    gate_b.set()
    gate_c.set()
    assert await third.finished == "c"
    assert await second.finished == "b"


@pytest.mark.asyncio
async def test_same_agent_type_cannot_run_twice():
    queue = AgentRunQueue(max_concurrent=2)
    gate, execute = _gated("done")
    ticket = queue.enqueue("auctions", execute)

    assert queue.is_running("auctions")
    with pytest.raises(AgentAlreadyRunningError) as exc_info:
        queue.enqueue("auctions", execute)
    assert exc_info.value.code == "409_AGENT_RUNNING"

    gate.set()
    await ticket.finished
    await asyncio.sleep(0)
    assert not queue.is_running("auctions")


@pytest.mark.asyncio
async def test_newer_queued_request_evicts_older_one():
    queue = AgentRunQueue(max_concurrent=1)
    gate, blocker = _gated("blocker")
    queue.enqueue("listings", blocker)

    _, stale_run = _gated("stale")
    fresh_gate, fresh_run = _gated("fresh")
    stale = queue.enqueue("collectibles", stale_run)
    fresh = queue.enqueue("collectibles", fresh_run)

    with pytest.raises(RunReplacedError):
        await stale.finished
    assert fresh.position == 1
    assert queue.status().queued == ["collectibles"]

    gate.set()
    fresh_gate.set()
    assert await fresh.finished == "fresh"


@pytest.mark.asyncio
async def test_evicted_ticket_futures_are_retrieved(caplog):
    queue = AgentRunQueue(max_concurrent=1)
    gate, blocker = _gated("blocker")
    queue.enqueue("listings", blocker)
    _, stale_run = _gated("stale")
    fresh_gate, fresh_run = _gated("fresh")

    stale = queue.enqueue("collectibles", stale_run)
    fresh = queue.enqueue("collectibles", fresh_run)
    assert stale.started.done() and stale.finished.done()

    caplog.set_level(logging.ERROR, logger="asyncio")
    del stale
    gc.collect()

    assert not [record for record in caplog.records if "never retrieved" in record.getMessage()]
    gate.set()
    fresh_gate.set()
    assert await fresh.finished == "fresh"


@pytest.mark.asyncio
async def test_failed_run_propagates_and_frees_the_slot():
    queue = AgentRunQueue(max_concurrent=1)

    async def explode() -> None:
        raise ValueError("boom")

    ticket = queue.enqueue("books", explode)
    with pytest.raises(ValueError, match="boom"):
        await ticket.finished
    await asyncio.sleep(0)

    assert queue.status().active == []


@pytest.mark.asyncio
async def test_queue_reports_gauges(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(queue_module, "metrics", stub)
    queue = AgentRunQueue(max_concurrent=1)
    gate, execute = _gated("x")

    ticket = queue.enqueue("retail", execute)
    gate.set()
    await ticket.finished
    await asyncio.sleep(0)

    active = stub.values("queue.active")
    assert active[0] == 1
    assert active[-1] == 0
