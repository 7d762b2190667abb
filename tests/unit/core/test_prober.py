"""Unit tests for the echo prober."""

from __future__ import annotations

import logging

import pytest
from _pytest.logging import LogCaptureFixture

from dnstest.core.errors import ProbeTransportError
from dnstest.core.prober import DEFAULT_PAYLOAD_SIZE, EchoProber, next_identifier
from dnstest.types import (
    FAILURE_INVALID_ADDRESS,
    FAILURE_TIMEOUT,
    FAILURE_UNSUPPORTED_FAMILY,
    Endpoint,
)
from tests.fixtures.probe_doubles import FakeEchoTransport


class TestShortCircuits:
    """Addresses rejected without network activity."""

    async def test_invalid_address(self, transport: FakeEchoTransport) -> None:
        prober = EchoProber(transport)
        outcome = await prober.probe(Endpoint("broken", "not-an-ip"))

        assert not outcome.succeeded
        assert outcome.failure_reason == FAILURE_INVALID_ADDRESS
        assert transport.sessions_opened == 0
        assert transport.calls == []

    async def test_ipv6_unsupported(self, transport: FakeEchoTransport) -> None:
        prober = EchoProber(transport)
        outcome = await prober.probe(Endpoint("Cloudflare v6", "2606:4700:4700::1111"))

        assert not outcome.succeeded
        assert outcome.failure_reason == FAILURE_UNSUPPORTED_FAMILY
        assert transport.sessions_opened == 0


class TestRounds:
    """Sequential echo rounds and loss accounting."""

    async def test_all_rounds_succeed(self, transport: FakeEchoTransport, google: Endpoint) -> None:
        prober = EchoProber(transport, attempts=3, per_attempt_timeout=1.0)
        outcome = await prober.probe(google)

        assert outcome.succeeded
        assert outcome.packet_loss == 0.0
        assert outcome.latency_ms is not None
        assert outcome.latency_ms >= 0.0
        assert [call.sequence for call in transport.calls] == [0, 1, 2]
        assert len({call.identifier for call in transport.calls}) == 1
        assert all(call.payload == bytes(DEFAULT_PAYLOAD_SIZE) for call in transport.calls)
        assert all(call.timeout == 1.0 for call in transport.calls)

    async def test_latency_is_mean_of_successful_rounds(self, google: Endpoint) -> None:
        transport = FakeEchoTransport({"8.8.8.8": [0.02, "timeout", 0.02]})
        prober = EchoProber(transport, attempts=3)
        outcome = await prober.probe(google)

        assert outcome.succeeded
        assert outcome.packet_loss == pytest.approx(1 / 3)  # pyright: ignore[reportUnknownMemberType]  # pytest.approx has incomplete type annotations
        assert outcome.latency_ms is not None
        assert 15.0 <= outcome.latency_ms < 500.0

    async def test_all_rounds_time_out(self, google: Endpoint) -> None:
        transport = FakeEchoTransport(default="timeout")
        outcome = await EchoProber(transport, attempts=2).probe(google)

        assert not outcome.succeeded
        assert outcome.failure_reason == FAILURE_TIMEOUT
        assert outcome.packet_loss == 1.0
        assert outcome.is_timeout

    async def test_transport_error_counts_as_lost_and_is_logged(
        self, google: Endpoint, caplog: LogCaptureFixture
    ) -> None:
        transport = FakeEchoTransport({"8.8.8.8": ["error", 0.0]})
        caplog.set_level(logging.DEBUG, logger="dnstest.core.prober")

        outcome = await EchoProber(transport, attempts=2).probe(google)

        assert outcome.succeeded
        assert outcome.packet_loss == pytest.approx(0.5)  # pyright: ignore[reportUnknownMemberType]  # pytest.approx has incomplete type annotations
        assert any("Echo round failed" in record.getMessage() for record in caplog.records)

    async def test_hanging_round_is_bounded_by_per_attempt_timeout(self, google: Endpoint) -> None:
        transport = FakeEchoTransport({"8.8.8.8": ["hang", 0.0]})
        outcome = await EchoProber(transport, attempts=2, per_attempt_timeout=0.05).probe(google)

        assert outcome.succeeded
        assert outcome.packet_loss == pytest.approx(0.5)  # pyright: ignore[reportUnknownMemberType]  # pytest.approx has incomplete type annotations

    async def test_call_overrides(self, transport: FakeEchoTransport, google: Endpoint) -> None:
        prober = EchoProber(transport, attempts=3, per_attempt_timeout=5.0)
        _ = await prober.probe(google, attempts=1, per_attempt_timeout=0.5)

        assert len(transport.calls) == 1
        assert transport.calls[0].timeout == 0.5

    async def test_session_closed_after_probe(self, transport: FakeEchoTransport, google: Endpoint) -> None:
        _ = await EchoProber(transport).probe(google)
        assert transport.sessions_opened == transport.sessions_closed == 1

    async def test_each_probe_gets_its_own_identifier(self, transport: FakeEchoTransport) -> None:
        prober = EchoProber(transport, attempts=1)
        _ = await prober.probe(Endpoint("a", "192.0.2.1"))
        _ = await prober.probe(Endpoint("b", "192.0.2.1"))

        first, second = transport.calls
        assert first.identifier != second.identifier


class TestErrors:
    """Input validation and fatal transport errors."""

    @pytest.mark.parametrize(("attempts", "timeout", "match"), [(0, 1.0, "attempts"), (1, 0.0, "per_attempt_timeout")])
    def test_invalid_construction(self, transport: FakeEchoTransport, attempts: int, timeout: float, match: str) -> None:
        with pytest.raises(ValueError, match=match):
            _ = EchoProber(transport, attempts=attempts, per_attempt_timeout=timeout)

    async def test_invalid_call_arguments(self, transport: FakeEchoTransport, google: Endpoint) -> None:
        prober = EchoProber(transport)
        with pytest.raises(ValueError, match="attempts"):
            _ = await prober.probe(google, attempts=0)
        with pytest.raises(ValueError, match="per_attempt_timeout"):
            _ = await prober.probe(google, per_attempt_timeout=-1.0)

    def test_negative_payload_rejected(self, transport: FakeEchoTransport) -> None:
        with pytest.raises(ValueError, match="payload_size"):
            _ = EchoProber(transport, payload_size=-1)

    async def test_socket_failure_propagates(self, google: Endpoint) -> None:
        prober = EchoProber(FakeEchoTransport(fail_open=True))
        with pytest.raises(ProbeTransportError, match="permission denied"):
            _ = await prober.probe(google)


def test_next_identifier_is_16_bit_and_changes() -> None:
    values = {next_identifier() for _ in range(5)}
    assert len(values) == 5
    assert all(0 <= value <= 0xFFFF for value in values)
