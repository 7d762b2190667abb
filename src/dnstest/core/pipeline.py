"""Entry points into the measurement pipeline.

This module wires the prober, scheduler and channel together for the two
consumers of a probe run, and exposes the pollution check:

- run_batch / collect_outcomes: drain a run to Done and return every outcome
- run_streaming: start a run and hand back the channel for polling
- run_until_done: drive a coroutine on a private loop whose shutdown is
  bounded even when leftover tasks ignore cancellation
- check_pollution / compare_domain / check_pollution_batch: compare system
  and reference resolution of domain names

Callers supply a validated, deduplicated endpoint sequence.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Iterable, Sequence
from typing import Any, Final

from dnstest.core.channel import ProgressChannel
from dnstest.core.comparator import PUBLIC_DNS_ALLOW_LIST, Comparator
from dnstest.core.errors import DnsTestError
from dnstest.core.icmp import IcmpEchoTransport
from dnstest.core.prober import (
    DEFAULT_ATTEMPTS,
    DEFAULT_PAYLOAD_SIZE,
    DEFAULT_PER_ATTEMPT_TIMEOUT,
    EchoProber,
)
from dnstest.core.scheduler import DEFAULT_CONCURRENCY_LIMIT, DEFAULT_GLOBAL_DEADLINE, Scheduler
from dnstest.types import (
    ComparisonResult,
    EchoTransport,
    Endpoint,
    IPAddress,
    OutcomeEvent,
    ProbeOutcome,
    Prober,
    Resolver,
)
from dnstest.utils.logging import get_logger, log_with_context

__all__ = [
    "build_prober",
    "check_pollution",
    "check_pollution_batch",
    "collect_outcomes",
    "compare_domain",
    "run_batch",
    "run_streaming",
    "run_until_done",
]

logger = get_logger(__name__)

DEFAULT_SHUTDOWN_GRACE: Final[float] = 1.0


def run_until_done[T](main: Coroutine[Any, Any, T], *, shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE) -> T:
    """Run a coroutine to completion on a fresh event loop.

    Tasks still pending when main returns (or raises) are cancelled and
    given at most shutdown_grace seconds to finish. A task that ignores
    cancellation is abandoned with the loop, so it cannot keep the caller
    waiting past the run's own deadline.

    Args:
        main: Coroutine to run
        shutdown_grace: Seconds granted to leftover tasks after cancellation

    Returns:
        The coroutine's result
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(main)
    finally:
        try:
            _cancel_leftovers(loop, shutdown_grace)
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor(timeout=shutdown_grace))
        finally:
            loop.close()


def _cancel_leftovers(loop: asyncio.AbstractEventLoop, grace: float) -> None:
    leftovers = [task for task in asyncio.all_tasks(loop) if not task.done()]
    if not leftovers:
        return
    for task in leftovers:
        _ = task.cancel()

    done, pending = loop.run_until_complete(asyncio.wait(leftovers, timeout=grace))
    for task in done:
        if not task.cancelled() and (exc := task.exception()) is not None:
            log_with_context(
                logger,
                logging.DEBUG,
                "Leftover task failed during shutdown",
                extra={"task": task.get_name(), "error": str(exc) or type(exc).__name__},
            )
    if pending:
        log_with_context(
            logger,
            logging.WARNING,
            "Abandoning tasks that ignored cancellation",
            extra={"tasks": len(pending), "shutdown_grace": grace},
        )


def build_prober(
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    per_attempt_timeout: float = DEFAULT_PER_ATTEMPT_TIMEOUT,
    payload_size: int = DEFAULT_PAYLOAD_SIZE,
    transport: EchoTransport | None = None,
    privileged: bool = True,
) -> EchoProber:
    """Create an echo prober, using the icmplib transport unless one is given."""
    return EchoProber(
        transport or IcmpEchoTransport(privileged=privileged),
        attempts=attempts,
        per_attempt_timeout=per_attempt_timeout,
        payload_size=payload_size,
    )


def run_streaming(
    endpoints: Sequence[Endpoint],
    *,
    prober: Prober,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    global_deadline: float = DEFAULT_GLOBAL_DEADLINE,
) -> ProgressChannel:
    """Start a detached probe run and return its progress channel.

    Must be called from a coroutine or callback running on an event loop.
    The run keeps going in the background; poll the channel with
    try_receive or drain until DoneEvent has been observed.

    Args:
        endpoints: Validated, deduplicated endpoints
        prober: Prober to fan the endpoints out to
        concurrency_limit: Maximum probes in flight
        global_deadline: Seconds allowed for the whole run

    Returns:
        Channel receiving the run's progress events

    Raises:
        RuntimeError: If no event loop is running
    """
    channel = ProgressChannel()
    scheduler = Scheduler(prober, concurrency_limit=concurrency_limit, global_deadline=global_deadline)
    _ = scheduler.start(endpoints, channel)
    return channel


async def collect_outcomes(
    endpoints: Sequence[Endpoint],
    *,
    prober: Prober,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    global_deadline: float = DEFAULT_GLOBAL_DEADLINE,
) -> list[ProbeOutcome]:
    """Run a probe batch and return every outcome delivered before Done.

    Outcomes appear in completion order. Endpoints abandoned at the
    deadline are missing from the result.
    """
    channel = run_streaming(
        endpoints,
        prober=prober,
        concurrency_limit=concurrency_limit,
        global_deadline=global_deadline,
    )
    outcomes: list[ProbeOutcome] = []
    async for event in channel:
        match event:
            case OutcomeEvent(outcome=outcome):
                outcomes.append(outcome)
            case _:
                pass
    return outcomes


def run_batch(
    endpoints: Sequence[Endpoint],
    *,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    per_attempt_timeout: float = DEFAULT_PER_ATTEMPT_TIMEOUT,
    attempts: int = DEFAULT_ATTEMPTS,
    global_deadline: float = DEFAULT_GLOBAL_DEADLINE,
    prober: Prober | None = None,
) -> list[ProbeOutcome]:
    """Probe endpoints to completion from synchronous code.

    Returns within roughly global_deadline plus DEFAULT_SHUTDOWN_GRACE even
    when a probe ignores cancellation.

    Args:
        endpoints: Validated, deduplicated endpoints
        concurrency_limit: Maximum probes in flight
        per_attempt_timeout: Seconds to wait for each echo reply
        attempts: Echo rounds per endpoint
        global_deadline: Seconds allowed for the whole run
        prober: Prober to use instead of an icmplib-backed EchoProber;
            attempts and per_attempt_timeout are then up to that prober

    Returns:
        Outcomes in completion order
    """
    if prober is None:
        prober = build_prober(attempts=attempts, per_attempt_timeout=per_attempt_timeout)
    return run_until_done(
        collect_outcomes(
            endpoints,
            prober=prober,
            concurrency_limit=concurrency_limit,
            global_deadline=global_deadline,
        )
    )


async def compare_domain(
    domain: str,
    system_resolver: Resolver,
    reference_resolver: Resolver,
    *,
    allow_list: Iterable[IPAddress] = PUBLIC_DNS_ALLOW_LIST,
) -> ComparisonResult:
    """Compare system and reference resolution of one domain.

    Raises:
        InputError: If the domain is empty
        ResolutionError: If either resolver fails
    """
    comparator = Comparator(system_resolver, reference_resolver, allow_list=allow_list)
    return await comparator.compare(domain)


def check_pollution(
    domain: str,
    system_resolver: Resolver,
    reference_resolver: Resolver,
    *,
    allow_list: Iterable[IPAddress] = PUBLIC_DNS_ALLOW_LIST,
) -> ComparisonResult:
    """Synchronous form of compare_domain."""
    return asyncio.run(
        compare_domain(domain, system_resolver, reference_resolver, allow_list=allow_list)
    )


async def check_pollution_batch(
    domains: Iterable[str],
    system_resolver: Resolver,
    reference_resolver: Resolver,
    *,
    allow_list: Iterable[IPAddress] = PUBLIC_DNS_ALLOW_LIST,
) -> tuple[list[ComparisonResult], list[tuple[str, DnsTestError]]]:
    """Check several domains one after another.

    A domain that fails to resolve is reported in the failures list and
    does not stop the remaining checks.

    Returns:
        Tuple of (results, failures) where failures pairs each failed
        domain with its error
    """
    comparator = Comparator(system_resolver, reference_resolver, allow_list=allow_list)
    results: list[ComparisonResult] = []
    failures: list[tuple[str, DnsTestError]] = []
    for domain in domains:
        try:
            results.append(await comparator.compare(domain))
        except DnsTestError as exc:
            log_with_context(
                logger,
                logging.WARNING,
                "Pollution check failed",
                extra={"domain": domain, "error": str(exc)},
            )
            failures.append((domain, exc))
    return results, failures
