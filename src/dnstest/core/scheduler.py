"""Bounded-parallelism scheduler fanning endpoints out to a prober.

This module implements the Scheduler class responsible for probing a list
of endpoints concurrently, at most concurrency_limit at a time, streaming
an (OutcomeEvent, TickEvent) pair per finished endpoint onto a progress
sink and terminating the stream with exactly one DoneEvent.

The whole fan-out runs under one global deadline, independent of the
prober's own per-attempt timeouts. When it expires, tasks that are still
waiting for admission or still probing are abandoned: they are cancelled
best-effort, never awaited, and nothing they produce afterwards reaches
the sink.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Final
from uuid import uuid4

from dnstest.types import (
    DoneEvent,
    Endpoint,
    OutcomeEvent,
    ProbeOutcome,
    Prober,
    ProgressSink,
    TickEvent,
)
from dnstest.utils.logging import get_logger, log_with_context, run_context

__all__ = [
    "DEFAULT_CONCURRENCY_LIMIT",
    "DEFAULT_GLOBAL_DEADLINE",
    "RunStats",
    "Scheduler",
]

type RunIDFactory = Callable[[], str]

DEFAULT_CONCURRENCY_LIMIT: Final[int] = 20
DEFAULT_GLOBAL_DEADLINE: Final[float] = 120.0

# Strong references to detached runs so they are not garbage collected mid-flight
_background_runs: set[asyncio.Task[RunStats]] = set()


@dataclass(slots=True, frozen=True)
class RunStats:
    """Bookkeeping for one finished run, returned by Scheduler.run."""

    run_id: str
    total: int
    tested: int
    deadline_exceeded: bool
    elapsed_seconds: float

    @property
    def untested(self) -> int:
        return self.total - self.tested


class _RunState:
    """Mutable state shared by the tasks of a single run.

    Only touched from the event loop thread and never across an await, so
    incrementing tested is atomic with respect to other tasks.
    """

    __slots__ = ("closed", "tested", "total")

    def __init__(self, total: int) -> None:
        self.total: int = total
        self.tested: int = 0
        self.closed: bool = False


class Scheduler:
    """Run a prober over many endpoints with bounded concurrency."""

    def __init__(
        self,
        prober: Prober,
        *,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        global_deadline: float = DEFAULT_GLOBAL_DEADLINE,
        run_id_factory: RunIDFactory | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        if concurrency_limit < 1:
            msg = "concurrency_limit must be at least 1"
            raise ValueError(msg)
        if global_deadline <= 0:
            msg = "global_deadline must be greater than zero"
            raise ValueError(msg)

        self._prober: Prober = prober
        self._concurrency_limit: int = concurrency_limit
        self._global_deadline: float = global_deadline
        self._run_id_factory: RunIDFactory = run_id_factory or (lambda: uuid4().hex[:8])
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    @property
    def concurrency_limit(self) -> int:
        return self._concurrency_limit

    @property
    def global_deadline(self) -> float:
        return self._global_deadline

    def start(self, endpoints: Sequence[Endpoint], sink: ProgressSink) -> asyncio.Task[RunStats]:
        """Schedule a run as a detached task on the running loop.

        The task completes after it has sent DoneEvent.

        Args:
            endpoints: Endpoints to probe, already validated and deduplicated
            sink: Producing end of the progress channel

        Returns:
            The background task running the scheduler
        """
        task = asyncio.get_running_loop().create_task(self.run(endpoints, sink))
        _background_runs.add(task)
        task.add_done_callback(_background_runs.discard)
        return task

    async def run(self, endpoints: Sequence[Endpoint], sink: ProgressSink) -> RunStats:
        """Probe every endpoint and stream progress to the sink.

        Args:
            endpoints: Endpoints to probe, already validated and deduplicated
            sink: Producing end of the progress channel

        Returns:
            Bookkeeping for the finished run
        """
        with run_context(self._run_id_factory()) as run_id:
            return await self._run(run_id, endpoints, sink)

    async def _run(self, run_id: str, endpoints: Sequence[Endpoint], sink: ProgressSink) -> RunStats:
        state = _RunState(total=len(endpoints))
        gate = asyncio.Semaphore(self._concurrency_limit)
        started = time.perf_counter()
        deadline_exceeded = False

        log_with_context(
            self._logger,
            logging.INFO,
            "Probe run started",
            extra={
                "endpoints": state.total,
                "concurrency_limit": self._concurrency_limit,
                "global_deadline": self._global_deadline,
            },
        )

        async def _probe_one(endpoint: Endpoint) -> None:
            async with gate:
                outcome = await self._probe_safely(endpoint)
            if state.closed:
                return
            state.tested += 1
            sink.send(OutcomeEvent(outcome))
            sink.send(TickEvent(tested=state.tested, total=state.total))

        loop = asyncio.get_running_loop()
        tasks = [loop.create_task(_probe_one(endpoint)) for endpoint in endpoints]

        try:
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=self._global_deadline)
                if pending:
                    deadline_exceeded = True
                    state.closed = True
                    for task in pending:
                        _ = task.cancel()
                    log_with_context(
                        self._logger,
                        logging.WARNING,
                        "Probe run deadline exceeded, abandoning remaining endpoints",
                        extra={
                            "global_deadline": self._global_deadline,
                            "tested": state.tested,
                            "untested": state.total - state.tested,
                        },
                    )
        except asyncio.CancelledError:
            state.closed = True
            for task in tasks:
                _ = task.cancel()
            raise
        finally:
            state.closed = True
            sink.send(DoneEvent())

        stats = RunStats(
            run_id=run_id,
            total=state.total,
            tested=state.tested,
            deadline_exceeded=deadline_exceeded,
            elapsed_seconds=time.perf_counter() - started,
        )
        log_with_context(
            self._logger,
            logging.INFO,
            "Probe run finished",
            extra={
                "tested": stats.tested,
                "total": stats.total,
                "elapsed_seconds": round(stats.elapsed_seconds, 3),
            },
        )
        return stats

    async def _probe_safely(self, endpoint: Endpoint) -> ProbeOutcome:
        """Probe one endpoint, turning an escaped error into a failed outcome."""
        try:
            return await self._prober.probe(endpoint)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_with_context(
                self._logger,
                logging.ERROR,
                "Probe raised instead of returning an outcome",
                extra={
                    "endpoint": endpoint.address,
                    "endpoint_name": endpoint.name,
                    "error": str(exc),
                    "exception_type": type(exc).__name__,
                },
            )
            return ProbeOutcome.failure(endpoint, str(exc) or type(exc).__name__)
