"""FIFO run queue capping how many scout-then-snipe runs execute at once.

State is in-process only; a restart drops both active and queued runs.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from airbitrage.config import settings
from airbitrage.observability.metrics import metrics

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[], Awaitable[Any]]


class AgentQueueError(RuntimeError):
    """Base exception raised by the run queue."""

    def __init__(self, message: str, code: str = "AGENT_QUEUE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class AgentAlreadyRunningError(AgentQueueError):
    def __init__(self, agent_type: str) -> None:
        super().__init__(f"{agent_type} agent is already running", code="409_AGENT_RUNNING")
        self.agent_type = agent_type


class RunReplacedError(AgentQueueError):
    """Delivered to a queued run evicted by a newer request for the same agent type."""

    def __init__(self, agent_type: str) -> None:
        super().__init__(f"Queued {agent_type} run was replaced by a new run", code="409_RUN_REPLACED")
        self.agent_type = agent_type


@dataclass
class EnqueueTicket:
    """Handle returned by ``enqueue``.

    ``position`` is 0 when the run started immediately, otherwise its 1-based place in
    line. ``started`` resolves when execution begins and ``finished`` when it ends; an
    evicted run sees ``RunReplacedError`` on both.
    """

    agent_type: str
    position: int
    started: asyncio.Future[None]
    finished: asyncio.Future[Any]


@dataclass
class _QueuedRun:
    run_id: str
    agent_type: str
    execute: ExecuteFn
    ticket: EnqueueTicket


@dataclass
class QueueStatus:
    active: list[str] = field(default_factory=list)
    queued: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "queued": self.queued,
            "activeCount": len(self.active),
            "queuedCount": len(self.queued),
        }


class AgentRunQueue:
    def __init__(self, max_concurrent: int | None = None) -> None:
        self._max_concurrent = max(1, max_concurrent or settings.max_concurrent_runs)
        self._active: dict[str, str] = {}
        self._queue: deque[_QueuedRun] = deque()
        self._tasks: set[asyncio.Task[None]] = set()
        self._ids = itertools.count(1)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def status(self) -> QueueStatus:
        return QueueStatus(active=list(self._active.values()), queued=[run.agent_type for run in self._queue])

    def is_running(self, agent_type: str) -> bool:
        return agent_type in self._active.values()

    def enqueue(self, agent_type: str, execute: ExecuteFn) -> EnqueueTicket:
        """Start ``execute`` now if a slot is free, otherwise queue it behind earlier runs.

        Raises ``AgentAlreadyRunningError`` when the agent type is already executing.
        A queued run of the same type is evicted in favour of this one.
        """
        if self.is_running(agent_type):
            raise AgentAlreadyRunningError(agent_type)

        for queued in list(self._queue):
            if queued.agent_type == agent_type:
                self._queue.remove(queued)
                self._fail(queued.ticket, RunReplacedError(agent_type))
                logger.info("queue.run_replaced", extra={"agent_type": agent_type, "run_id": queued.run_id})

        loop = asyncio.get_running_loop()
        run = _QueuedRun(
            run_id=f"run_{next(self._ids)}",
            agent_type=agent_type,
            execute=execute,
            ticket=EnqueueTicket(
                agent_type=agent_type,
                position=0,
                started=loop.create_future(),
                finished=loop.create_future(),
            ),
        )
        if len(self._active) < self._max_concurrent:
            self._start(run)
        else:
            self._queue.append(run)
            run.ticket.position = len(self._queue)
            logger.info(
                "queue.run_queued",
                extra={"agent_type": agent_type, "run_id": run.run_id, "position": run.ticket.position},
            )
        self._report()
        return run.ticket

    def _start(self, run: _QueuedRun) -> None:
        self._active[run.run_id] = run.agent_type
        if not run.ticket.started.done():
            run.ticket.started.set_result(None)
        logger.info("queue.run_started", extra={"agent_type": run.agent_type, "run_id": run.run_id})
        task = asyncio.create_task(self._execute(run), name=f"agent-run-{run.run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, run: _QueuedRun) -> None:
        try:
            result = await run.execute()
        except asyncio.CancelledError:
            if not run.ticket.finished.done():
                run.ticket.finished.cancel()
            raise
        except Exception as exc:
            logger.exception("queue.run_failed", extra={"agent_type": run.agent_type, "run_id": run.run_id})
            if not run.ticket.finished.done():
                run.ticket.finished.set_exception(exc)
        else:
            if not run.ticket.finished.done():
                run.ticket.finished.set_result(result)
        finally:
            self._active.pop(run.run_id, None)
            logger.info("queue.run_finished", extra={"agent_type": run.agent_type, "run_id": run.run_id})
            self._advance()

    def _advance(self) -> None:
        while len(self._active) < self._max_concurrent and self._queue:
            self._start(self._queue.popleft())
        for index, queued in enumerate(self._queue, start=1):
            queued.ticket.position = index
        self._report()

    @staticmethod
    def _fail(ticket: EnqueueTicket, exc: AgentQueueError) -> None:
        for future in (ticket.started, ticket.finished):
            if not future.done():
                future.set_exception(exc)
            # Evicted callers may never await either future.
            if not future.cancelled():
                future.exception()

    def _report(self) -> None:
        metrics.gauge("queue.active", len(self._active))
        metrics.gauge("queue.queued", len(self._queue))


_QUEUE_INSTANCE: AgentRunQueue | None = None


def get_agent_queue() -> AgentRunQueue:
    """Singleton accessor used by API routes."""
    global _QUEUE_INSTANCE  # noqa: PLW0603
    if _QUEUE_INSTANCE is None:
        _QUEUE_INSTANCE = AgentRunQueue(settings.max_concurrent_runs)
    return _QUEUE_INSTANCE
