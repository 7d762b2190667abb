"""Error taxonomy for the measurement pipeline.

Input errors and transport errors are raised by the operation that hit
them. Timeouts are not exceptions at the component boundary: the prober
reports them as an outcome state and the scheduler reports an expired
deadline by truncating the event stream.
"""

from __future__ import annotations


class DnsTestError(Exception):
    """Base exception for all dnstest errors."""


class InputError(DnsTestError, ValueError):
    """Raised for malformed per-item input such as an empty domain name."""


class TransportError(DnsTestError):
    """Raised when the network layer cannot perform an operation at all."""


class ProbeTransportError(TransportError):
    """Raised when an ICMP socket cannot be opened for probing.

    Fatal to the probe call that raised it, never to a whole batch.
    """


class EchoError(TransportError):
    """Raised by an echo session when a single round fails.

    The prober logs and counts the round as lost.
    """


class ResolutionError(TransportError):
    """Raised when a resolver fails to answer a query."""

    domain: str
    resolver: str

    def __init__(self, message: str, *, domain: str, resolver: str) -> None:
        """Initialize resolution error.

        Args:
            message: Error message
            domain: Domain that failed to resolve
            resolver: Label of the resolver that failed
        """
        super().__init__(message)
        self.domain = domain
        self.resolver = resolver


class ServerListError(DnsTestError):
    """Raised when a DNS server list cannot be loaded, parsed or written."""
