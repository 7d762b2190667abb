"""Protocol definitions for component interfaces.

This module defines structural subtyping protocols that establish the
contracts between the measurement pipeline and its network-facing
collaborators, without requiring inheritance. Test doubles implement the
same protocols.
"""

from contextlib import AbstractAsyncContextManager
from typing import Literal, Protocol, runtime_checkable

from dnstest.types.aliases import ProgressEvent
from dnstest.types.models import Endpoint, IPAddress, ProbeOutcome

type RecordType = Literal["A", "AAAA"]


class EchoSession(Protocol):
    """One open ICMP socket, valid for the duration of a single probe call."""

    async def echo(
        self,
        address: str,
        *,
        identifier: int,
        sequence: int,
        payload: bytes,
        timeout: float,
    ) -> None:
        """Send one echo request and wait for its matching reply.

        Args:
            address: Destination IP literal
            identifier: Echo identifier unique to the calling probe
            sequence: Round number within the probe
            payload: Echo payload bytes
            timeout: Seconds to wait for the reply

        Raises:
            TimeoutError: If no matching reply arrived within timeout
            EchoError: If the round failed for any other reason
        """
        ...


@runtime_checkable
class EchoTransport(Protocol):
    """Factory for echo sessions.

    Opening a session may fail with ProbeTransportError when no socket can
    be created at all (for example missing privileges).
    """

    def session(self) -> AbstractAsyncContextManager[EchoSession]:
        """Open a session usable for the rounds of one probe call."""
        ...


@runtime_checkable
class Prober(Protocol):
    """Anything the scheduler can fan endpoints out to."""

    async def probe(self, endpoint: Endpoint) -> ProbeOutcome:
        """Probe one endpoint and return its outcome."""
        ...


class ProgressSink(Protocol):
    """Producing end of a progress channel."""

    def send(self, event: ProgressEvent) -> None:
        """Enqueue an event without blocking."""
        ...


@runtime_checkable
class Resolver(Protocol):
    """DNS resolver bound to a fixed configuration."""

    @property
    def label(self) -> str:
        """Human-readable name used in logs and errors."""
        ...

    async def resolve(self, qname: str, rdtype: RecordType) -> frozenset[IPAddress]:
        """Resolve qname for one record type.

        Args:
            qname: Fully-qualified domain name (with trailing dot)
            rdtype: Record type to query

        Returns:
            Addresses in the answer; empty when the name exists but has no
            records of this type

        Raises:
            ResolutionError: On NXDOMAIN, timeouts or resolver failures
        """
        ...
