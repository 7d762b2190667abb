"""Integration tests for a whole probe run: prober, scheduler, channel and aggregator."""

from __future__ import annotations

import time

import pytest

from dnstest.core.aggregator import summarize
from dnstest.core.pipeline import build_prober, run_batch
from dnstest.types import FAILURE_TIMEOUT, FAILURE_UNSUPPORTED_FAMILY, Endpoint
from tests.fixtures.probe_doubles import FakeEchoTransport, ScriptedProber, ScriptedResult, endpoints

pytestmark = pytest.mark.integration


def test_three_endpoint_run_summary() -> None:
    """Two fast answers and one timeout, two probes at a time."""
    servers = [
        Endpoint(name="A", address="192.0.2.10"),
        Endpoint(name="B", address="192.0.2.20"),
        Endpoint(name="C", address="192.0.2.30"),
    ]
    prober = ScriptedProber(
        {
            "192.0.2.10": ScriptedResult(latency_ms=10.0, delay=0.01),
            "192.0.2.20": ScriptedResult(latency_ms=20.0, delay=0.02),
            "192.0.2.30": ScriptedResult(latency_ms=None, delay=0.05),
        }
    )

    outcomes = run_batch(servers, concurrency_limit=2, prober=prober)
    summary = summarize(outcomes)

    assert summary.total == 3
    assert summary.succeeded == 2
    assert summary.timed_out == 1
    assert summary.failed == 0
    assert summary.avg_latency_ms == pytest.approx(15.0)
    assert summary.min_latency_ms == 10.0
    assert summary.max_latency_ms == 20.0
    assert prober.max_in_flight <= 2


def test_echo_prober_over_fake_transport() -> None:
    transport = FakeEchoTransport(
        {
            "192.0.2.1": [0.01, 0.01, 0.01],
            "192.0.2.2": ["timeout", 0.01, "error"],
            "192.0.2.3": ["timeout", "timeout", "timeout"],
        }
    )
    prober = build_prober(attempts=3, per_attempt_timeout=1.0, transport=transport)
    servers = [*endpoints("192.0.2.1", "192.0.2.2", "192.0.2.3"), Endpoint(name="v6", address="2001:db8::1")]

    outcomes = {o.endpoint.address: o for o in run_batch(servers, concurrency_limit=4, prober=prober)}

    assert outcomes["192.0.2.1"].succeeded
    assert outcomes["192.0.2.1"].packet_loss == 0.0
    assert outcomes["192.0.2.1"].latency_ms is not None
    assert outcomes["192.0.2.1"].latency_ms > 5.0

    assert outcomes["192.0.2.2"].succeeded
    assert outcomes["192.0.2.2"].packet_loss == pytest.approx(2 / 3)

    assert not outcomes["192.0.2.3"].succeeded
    assert outcomes["192.0.2.3"].failure_reason == FAILURE_TIMEOUT

    assert outcomes["2001:db8::1"].failure_reason == FAILURE_UNSUPPORTED_FAMILY

    assert transport.sessions_opened == transport.sessions_closed == 3


def test_global_deadline_bounds_the_run() -> None:
    """A run over endpoints that never answer still returns near the deadline."""
    prober = ScriptedProber(default=ScriptedResult(hang=True))
    servers = endpoints(*(f"198.51.100.{i}" for i in range(1, 101)))

    started = time.monotonic()
    outcomes = run_batch(servers, concurrency_limit=10, global_deadline=1.0, prober=prober)
    elapsed = time.monotonic() - started

    assert elapsed < 2.0
    assert len(outcomes) < 100
    assert len(prober.started) <= 100


def test_deadline_keeps_outcomes_finished_in_time() -> None:
    fast = {f"198.51.100.{i}": ScriptedResult(latency_ms=1.0) for i in range(1, 6)}
    prober = ScriptedProber(fast, default=ScriptedResult(hang=True))
    servers = endpoints(*(f"198.51.100.{i}" for i in range(1, 21)))

    outcomes = run_batch(servers, concurrency_limit=20, global_deadline=0.5, prober=prober)

    assert sorted(o.endpoint.address for o in outcomes) == sorted(fast)
