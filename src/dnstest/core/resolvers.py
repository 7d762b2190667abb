"""DNS resolvers bound to system or reference configuration.

DnsPythonResolver adapts dnspython's asyncio resolver to the Resolver
protocol: a missing record type yields an empty set, every other failure
raises ResolutionError.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Sequence
from typing import Final, Self, override

import dns.asyncresolver
import dns.exception
import dns.resolver

from dnstest.core.errors import ResolutionError
from dnstest.types import IPAddress, RecordType
from dnstest.utils.logging import get_logger, log_with_context

__all__ = [
    "DEFAULT_REFERENCE_RESOLVERS",
    "DEFAULT_RESOLVER_TIMEOUT",
    "DnsPythonResolver",
]

DEFAULT_REFERENCE_RESOLVERS: Final[tuple[str, ...]] = ("8.8.8.8", "1.1.1.1")
DEFAULT_RESOLVER_TIMEOUT: Final[float] = 5.0


class DnsPythonResolver:
    """Resolver backed by dns.asyncresolver.Resolver."""

    def __init__(
        self,
        resolver: dns.asyncresolver.Resolver,
        *,
        label: str,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._resolver: dns.asyncresolver.Resolver = resolver
        self._label: str = label
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    @classmethod
    def system(cls, *, timeout: float = DEFAULT_RESOLVER_TIMEOUT) -> Self:
        """Create a resolver using the host configuration.

        Raises:
            ResolutionError: If the host has no usable resolver configuration
        """
        try:
            resolver = dns.asyncresolver.Resolver(configure=True)
        except dns.resolver.NoResolverConfiguration as exc:
            msg = f"No system resolver configuration found: {exc}"
            raise ResolutionError(msg, domain="", resolver="system") from exc
        resolver.lifetime = timeout
        return cls(resolver, label="system")

    @classmethod
    def reference(
        cls,
        nameservers: Sequence[str] = DEFAULT_REFERENCE_RESOLVERS,
        *,
        timeout: float = DEFAULT_RESOLVER_TIMEOUT,
    ) -> Self:
        """Create a resolver bound to explicit public nameservers.

        Args:
            nameservers: Nameserver IP literals, queried on port 53
            timeout: Total seconds allowed per query

        Raises:
            ValueError: If nameservers is empty
        """
        if not nameservers:
            msg = "At least one reference nameserver is required"
            raise ValueError(msg)
        resolver = dns.asyncresolver.Resolver(configure=False)
        resolver.nameservers = list(nameservers)
        resolver.port = 53
        resolver.lifetime = timeout
        return cls(resolver, label="reference(" + ", ".join(nameservers) + ")")

    @property
    def label(self) -> str:
        return self._label

    async def resolve(self, qname: str, rdtype: RecordType) -> frozenset[IPAddress]:
        """Resolve qname for one record type.

        Args:
            qname: Fully-qualified domain name
            rdtype: "A" or "AAAA"

        Returns:
            Addresses in the answer, empty when the name has no such records

        Raises:
            ResolutionError: On NXDOMAIN, timeouts or resolver failures
        """
        try:
            answer = await self._resolver.resolve(qname, rdtype, raise_on_no_answer=False)
        except dns.resolver.NoAnswer:
            return frozenset()
        except dns.resolver.NXDOMAIN as exc:
            raise self._error(qname, rdtype, "domain does not exist", exc) from exc
        except dns.resolver.NoNameservers as exc:
            raise self._error(qname, rdtype, "no nameserver answered", exc) from exc
        except dns.exception.Timeout as exc:
            raise self._error(qname, rdtype, "query timed out", exc) from exc
        except dns.exception.DNSException as exc:
            raise self._error(qname, rdtype, str(exc) or type(exc).__name__, exc) from exc

        if answer.rrset is None:
            return frozenset()
        return frozenset(ipaddress.ip_address(rdata.address) for rdata in answer.rrset)

    def _error(self, qname: str, rdtype: str, reason: str, exc: BaseException) -> ResolutionError:
        log_with_context(
            self._logger,
            logging.DEBUG,
            "DNS query failed",
            extra={
                "domain": qname,
                "rdtype": rdtype,
                "resolver": self._label,
                "exception_type": type(exc).__name__,
            },
        )
        return ResolutionError(
            f"{self._label} failed to resolve {qname} {rdtype}: {reason}",
            domain=qname.rstrip("."),
            resolver=self._label,
        )

    @override
    def __repr__(self) -> str:
        return f"DnsPythonResolver(label={self._label!r})"
