"""Unit tests for the pipeline entry points."""

from __future__ import annotations

import asyncio
import logging
import time
from ipaddress import ip_address
from unittest.mock import patch

import pytest
from _pytest.logging import LogCaptureFixture

from dnstest.core.channel import ProgressChannel
from dnstest.core.errors import InputError, ResolutionError
from dnstest.core.icmp import IcmpEchoTransport
from dnstest.core.pipeline import (
    DEFAULT_SHUTDOWN_GRACE,
    build_prober,
    check_pollution,
    check_pollution_batch,
    collect_outcomes,
    compare_domain,
    run_batch,
    run_streaming,
    run_until_done,
)
from dnstest.types import DoneEvent, Endpoint, OutcomeEvent, TickEvent
from tests.fixtures.probe_doubles import (
    FakeEchoTransport,
    FakeResolver,
    ScriptedProber,
    ScriptedResult,
    StubbornProber,
    endpoints,
    nxdomain,
)


class TestBuildProber:
    """Test suite for build_prober."""

    def test_uses_given_transport_and_settings(self, transport: FakeEchoTransport) -> None:
        prober = build_prober(attempts=4, per_attempt_timeout=0.5, transport=transport)
        assert prober.attempts == 4
        assert prober.per_attempt_timeout == 0.5

    def test_defaults_to_icmp_transport(self) -> None:
        prober = build_prober(privileged=False)
        assert isinstance(prober._transport, IcmpEchoTransport)  # pyright: ignore[reportPrivateUsage]  # testing internal state

    def test_rejects_invalid_attempts(self) -> None:
        with pytest.raises(ValueError, match="attempts"):
            _ = build_prober(attempts=0, transport=FakeEchoTransport())


class TestRunStreaming:
    """Test suite for run_streaming."""

    async def test_returns_channel_before_run_finishes(self) -> None:
        prober = ScriptedProber(default=ScriptedResult(delay=0.05))
        channel = run_streaming(endpoints("192.0.2.1", "192.0.2.2"), prober=prober)

        assert isinstance(channel, ProgressChannel)
        assert channel.drain() == []

        events = [await channel.receive() for _ in range(5)]
        assert isinstance(events[-1], DoneEvent)
        assert sum(isinstance(event, OutcomeEvent) for event in events) == 2
        ticks = [event for event in events if isinstance(event, TickEvent)]
        assert [tick.tested for tick in ticks] == [1, 2]
        assert channel.finished

    async def test_empty_input_yields_only_done(self) -> None:
        channel = run_streaming([], prober=ScriptedProber())
        assert isinstance(await channel.receive(), DoneEvent)

    def test_requires_running_loop(self) -> None:
        with pytest.raises(RuntimeError):
            _ = run_streaming(endpoints("192.0.2.1"), prober=ScriptedProber())


class TestCollectOutcomes:
    """Test suite for collect_outcomes."""

    async def test_outcomes_in_completion_order(self) -> None:
        prober = ScriptedProber(
            {
                "192.0.2.1": ScriptedResult(latency_ms=30.0, delay=0.03),
                "192.0.2.2": ScriptedResult(latency_ms=5.0, delay=0.0),
            }
        )
        outcomes = await collect_outcomes(endpoints("192.0.2.1", "192.0.2.2"), prober=prober)
        assert [o.endpoint.address for o in outcomes] == ["192.0.2.2", "192.0.2.1"]


class TestRunBatch:
    """Test suite for run_batch."""

    def test_single_endpoint(self) -> None:
        prober = ScriptedProber({"8.8.8.8": ScriptedResult(latency_ms=12.0)})
        outcomes = run_batch(endpoints("8.8.8.8"), prober=prober)

        assert len(outcomes) == 1
        assert outcomes[0].succeeded
        assert outcomes[0].latency_ms == 12.0

    def test_empty_input(self) -> None:
        assert run_batch([], prober=ScriptedProber()) == []

    def test_every_endpoint_reported_once(self) -> None:
        addresses = [f"192.0.2.{i}" for i in range(1, 31)]
        outcomes = run_batch(endpoints(*addresses), concurrency_limit=4, prober=ScriptedProber())

        assert sorted(o.endpoint.address for o in outcomes) == sorted(addresses)

    def test_builds_echo_prober_when_none_given(self) -> None:
        transport = FakeEchoTransport({"192.0.2.1": [0.0, 0.0]})

        with patch("dnstest.core.pipeline.IcmpEchoTransport", return_value=transport):
            outcomes = run_batch(endpoints("192.0.2.1"), attempts=2, per_attempt_timeout=1.0)

        assert outcomes[0].succeeded
        assert len(transport.calls) == 2
        assert {call.timeout for call in transport.calls} == {1.0}

    def test_returns_despite_ignored_cancellation(self) -> None:
        prober = StubbornProber()
        started = time.perf_counter()

        outcomes = run_batch(endpoints("192.0.2.1", "192.0.2.2", "192.0.2.3"), global_deadline=0.3, prober=prober)

        assert outcomes == []
        assert time.perf_counter() - started < 0.3 + DEFAULT_SHUTDOWN_GRACE + 2.0
        assert len(prober.started) == 3
        assert prober.cancellations >= 3


class TestRunUntilDone:
    """Test suite for run_until_done."""

    def test_returns_coroutine_result(self) -> None:
        async def answer() -> int:
            await asyncio.sleep(0)
            return 42

        assert run_until_done(answer()) == 42

    def test_propagates_exception(self) -> None:
        async def fail() -> None:
            raise InputError("bad input")

        with pytest.raises(InputError, match="bad input"):
            run_until_done(fail())

    def test_cancels_leftover_tasks(self) -> None:
        leftovers: list[asyncio.Task[None]] = []

        async def idle() -> None:
            _ = await asyncio.Event().wait()

        async def spawn() -> None:
            leftovers.append(asyncio.get_running_loop().create_task(idle()))
            await asyncio.sleep(0)

        run_until_done(spawn())

        assert leftovers[0].cancelled()

    def test_abandons_stubborn_task_after_grace(self, caplog: LogCaptureFixture) -> None:
        prober = StubbornProber()

        async def spawn() -> None:
            _ = asyncio.get_running_loop().create_task(prober.probe(Endpoint("stuck", "192.0.2.1")))
            await asyncio.sleep(0)

        caplog.set_level(logging.WARNING, logger="dnstest.core.pipeline")
        started = time.perf_counter()

        run_until_done(spawn(), shutdown_grace=0.1)

        assert time.perf_counter() - started < 2.0
        assert prober.cancellations == 1
        assert any("ignored cancellation" in record.getMessage() for record in caplog.records)


class TestPollutionEntryPoints:
    """Test suite for compare_domain, check_pollution and check_pollution_batch."""

    async def test_compare_domain(self) -> None:
        system = FakeResolver("system", {("example.com.", "A"): ["203.0.113.9"]})
        reference = FakeResolver("reference", {("example.com.", "A"): ["1.1.1.1"]})

        result = await compare_domain("example.com", system, reference)

        assert result.polluted

    async def test_compare_domain_with_custom_allow_list(self) -> None:
        system = FakeResolver("system", {("example.com.", "A"): ["203.0.113.9"]})
        reference = FakeResolver("reference", {("example.com.", "A"): ["1.1.1.1"]})

        result = await compare_domain("example.com", system, reference, allow_list=[ip_address("203.0.113.9")])

        assert not result.polluted

    def test_check_pollution_sync(self) -> None:
        answers = {("example.com.", "A"): ["93.184.216.34"]}
        result = check_pollution("example.com", FakeResolver("system", answers), FakeResolver("reference", answers))

        assert not result.polluted
        assert result.system_addresses == frozenset({ip_address("93.184.216.34")})

    def test_check_pollution_propagates_resolution_error(self) -> None:
        system = FakeResolver("system", {("missing.example.", "A"): nxdomain("missing.example")})
        with pytest.raises(ResolutionError):
            _ = check_pollution("missing.example", system, FakeResolver("reference"))

    async def test_batch_collects_failures_and_continues(self) -> None:
        system = FakeResolver(
            "system",
            {
                ("missing.example.", "A"): nxdomain("missing.example"),
                ("example.com.", "A"): ["1.1.1.1"],
            },
        )
        reference = FakeResolver("reference", {("example.com.", "A"): ["1.1.1.1"]})

        results, failures = await check_pollution_batch(
            ["missing.example", "", "example.com"], system, reference
        )

        assert [r.domain for r in results] == ["example.com"]
        assert [domain for domain, _ in failures] == ["missing.example", ""]
        assert isinstance(failures[0][1], ResolutionError)
        assert isinstance(failures[1][1], InputError)

    async def test_batch_checks_domains_sequentially(self) -> None:
        system = FakeResolver("system")
        _ = await check_pollution_batch(["a.example", "b.example"], system, FakeResolver("reference"))
        assert [q for q, _ in system.queries] == ["a.example.", "a.example.", "b.example.", "b.example."]
