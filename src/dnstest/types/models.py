"""Data models for the dnstest application.

This module defines immutable dataclasses used throughout the application
for type-safe data transfer between the prober, scheduler, aggregator and
comparator components.
"""

import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Final, Self

type IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

# Failure reasons with defined semantics; any other reason counts as a plain failure
FAILURE_INVALID_ADDRESS: Final[str] = "invalid address"
FAILURE_UNSUPPORTED_FAMILY: Final[str] = "address family unsupported"
FAILURE_TIMEOUT: Final[str] = "timeout"


@dataclass(slots=True, frozen=True)
class Endpoint:
    """A named network target, typically a DNS resolver's address.

    The address is kept as given. Whether it parses is checked at probe
    time, so an unparseable address only fails its own probe.
    """

    name: str
    address: str

    @property
    def ip(self) -> IPAddress | None:
        """Parsed address, or None if the address is not an IP literal."""
        try:
            return ipaddress.ip_address(self.address.strip())
        except ValueError:
            return None

    @property
    def is_ipv4(self) -> bool:
        return isinstance(self.ip, ipaddress.IPv4Address)

    @property
    def is_ipv6(self) -> bool:
        return isinstance(self.ip, ipaddress.IPv6Address)


@dataclass(slots=True, frozen=True)
class ProbeOutcome:
    """Result of probing a single endpoint.

    Invariants:
        - succeeded implies latency_ms is present and failure_reason is None
        - not succeeded implies latency_ms is None
        - packet_loss lies in [0, 1]

    Use the success() and failure() constructors rather than building
    instances directly.
    """

    endpoint: Endpoint
    latency_ms: float | None
    packet_loss: float
    succeeded: bool
    failure_reason: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.packet_loss <= 1.0:
            msg = f"packet_loss must be within [0, 1], got: {self.packet_loss}"
            raise ValueError(msg)
        if self.succeeded:
            if self.latency_ms is None:
                msg = "successful outcome requires latency_ms"
                raise ValueError(msg)
            if self.failure_reason is not None:
                msg = "successful outcome must not carry a failure_reason"
                raise ValueError(msg)
        elif self.latency_ms is not None:
            msg = "failed outcome must not carry latency_ms"
            raise ValueError(msg)

    @classmethod
    def success(cls, endpoint: Endpoint, latency_ms: float, packet_loss: float = 0.0) -> Self:
        """Create a successful outcome."""
        return cls(
            endpoint=endpoint,
            latency_ms=latency_ms,
            packet_loss=packet_loss,
            succeeded=True,
            failure_reason=None,
        )

    @classmethod
    def failure(cls, endpoint: Endpoint, reason: str, packet_loss: float = 1.0) -> Self:
        """Create a failed outcome."""
        return cls(
            endpoint=endpoint,
            latency_ms=None,
            packet_loss=packet_loss,
            succeeded=False,
            failure_reason=reason,
        )

    @property
    def is_timeout(self) -> bool:
        """True when every attempt timed out."""
        return not self.succeeded and self.failure_reason == FAILURE_TIMEOUT


@dataclass(slots=True, frozen=True)
class RunSummary:
    """Running statistics folded from probe outcomes.

    Holds nothing that cannot be recomputed from the outcomes observed so
    far. Build it with dnstest.core.aggregator.fold.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    avg_latency_ms: float | None = None
    min_latency_ms: float | None = None
    max_latency_ms: float | None = None

    def success_rate(self) -> float:
        """Percentage of successful outcomes, 0.0 when nothing was folded."""
        if self.total == 0:
            return 0.0
        return self.succeeded / self.total * 100.0


@dataclass(slots=True, frozen=True)
class ComparisonResult:
    """Outcome of comparing system and reference resolution for one domain."""

    domain: str
    system_addresses: frozenset[IPAddress]
    reference_addresses: frozenset[IPAddress]
    polluted: bool
    detail: str = field(default="", compare=False)


@dataclass(slots=True, frozen=True)
class Response:
    """HTTP response.

    Represents an HTTP response with status code, raw body text, and headers.
    """

    status: int
    body: str
    headers: Mapping[str, str]
