"""Unit tests for the data models."""

from __future__ import annotations

import ipaddress

import pytest

from dnstest.types import (
    FAILURE_INVALID_ADDRESS,
    FAILURE_TIMEOUT,
    ComparisonResult,
    Endpoint,
    ProbeOutcome,
    RunSummary,
)


class TestEndpoint:
    """Test suite for Endpoint address parsing."""

    def test_ipv4_endpoint(self) -> None:
        endpoint = Endpoint("Google", "8.8.8.8")
        assert endpoint.ip == ipaddress.ip_address("8.8.8.8")
        assert endpoint.is_ipv4
        assert not endpoint.is_ipv6

    def test_ipv6_endpoint(self) -> None:
        endpoint = Endpoint("Cloudflare", "2606:4700:4700::1111")
        assert endpoint.is_ipv6
        assert not endpoint.is_ipv4

    @pytest.mark.parametrize("address", ["", "not-an-ip", "256.1.1.1", "dns.google"])
    def test_unparseable_address_has_no_ip(self, address: str) -> None:
        endpoint = Endpoint("broken", address)
        assert endpoint.ip is None
        assert not endpoint.is_ipv4
        assert not endpoint.is_ipv6

    def test_endpoint_is_immutable(self) -> None:
        endpoint = Endpoint("Google", "8.8.8.8")
        with pytest.raises(AttributeError):
            endpoint.name = "other"  # pyright: ignore[reportAttributeAccessIssue]  # frozen dataclass


class TestProbeOutcome:
    """Test suite for ProbeOutcome invariants."""

    def test_success_constructor(self, google: Endpoint) -> None:
        outcome = ProbeOutcome.success(google, 12.5, packet_loss=1 / 3)
        assert outcome.succeeded
        assert outcome.latency_ms == 12.5
        assert outcome.failure_reason is None
        assert not outcome.is_timeout

    def test_failure_constructor(self, google: Endpoint) -> None:
        outcome = ProbeOutcome.failure(google, FAILURE_TIMEOUT)
        assert not outcome.succeeded
        assert outcome.latency_ms is None
        assert outcome.packet_loss == 1.0
        assert outcome.is_timeout

    def test_non_timeout_failure_is_not_timeout(self, google: Endpoint) -> None:
        assert not ProbeOutcome.failure(google, FAILURE_INVALID_ADDRESS).is_timeout

    def test_success_without_latency_rejected(self, google: Endpoint) -> None:
        with pytest.raises(ValueError, match="requires latency_ms"):
            _ = ProbeOutcome(google, latency_ms=None, packet_loss=0.0, succeeded=True)

    def test_success_with_reason_rejected(self, google: Endpoint) -> None:
        with pytest.raises(ValueError, match="must not carry a failure_reason"):
            _ = ProbeOutcome(google, latency_ms=1.0, packet_loss=0.0, succeeded=True, failure_reason="x")

    def test_failure_with_latency_rejected(self, google: Endpoint) -> None:
        with pytest.raises(ValueError, match="must not carry latency_ms"):
            _ = ProbeOutcome(google, latency_ms=1.0, packet_loss=1.0, succeeded=False, failure_reason="x")

    @pytest.mark.parametrize("loss", [-0.1, 1.5])
    def test_packet_loss_out_of_range_rejected(self, google: Endpoint, loss: float) -> None:
        with pytest.raises(ValueError, match="packet_loss"):
            _ = ProbeOutcome.failure(google, FAILURE_TIMEOUT, packet_loss=loss)


class TestRunSummary:
    """Test suite for RunSummary helpers."""

    def test_success_rate_empty(self) -> None:
        assert RunSummary().success_rate() == 0.0

    def test_success_rate(self) -> None:
        summary = RunSummary(total=4, succeeded=3, failed=1)
        assert summary.success_rate() == pytest.approx(75.0)  # pyright: ignore[reportUnknownMemberType]  # pytest.approx has incomplete type annotations


def test_comparison_result_equality_ignores_detail() -> None:
    addresses = frozenset({ipaddress.ip_address("1.1.1.1")})
    a = ComparisonResult("example.com", addresses, addresses, polluted=False, detail="one")
    b = ComparisonResult("example.com", addresses, addresses, polluted=False, detail="two")
    assert a == b
