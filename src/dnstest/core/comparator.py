"""DNS pollution comparator.

Resolves a domain through the system resolver and through a trusted
reference resolver and classifies the pair of answers. A system address is
accepted when the reference resolver also returned it or when it belongs
to the allow-list of well-known public resolver addresses; the answer is
reported as polluted as soon as one system address is accepted by
neither.

This rule flags legitimate CDN and anycast deployments that hand out
different addresses per vantage point, so expect false positives for
large sites.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable
from typing import Final

from dnstest.core.errors import InputError
from dnstest.types import ComparisonResult, IPAddress, Resolver
from dnstest.utils.formatting import format_addresses
from dnstest.utils.logging import get_logger, log_with_context

__all__ = [
    "PUBLIC_DNS_ALLOW_LIST",
    "Comparator",
    "detect_pollution",
    "normalize_domain",
    "resolve_addresses",
]

PUBLIC_DNS_ALLOW_LIST: Final[frozenset[IPAddress]] = frozenset(
    ipaddress.ip_address(address)
    for address in (
        # IPv4
        "8.8.8.8",
        "8.8.4.4",
        "1.1.1.1",
        "1.0.0.1",
        "9.9.9.9",
        "208.67.222.222",
        "208.67.220.220",
        # IPv6
        "2001:4860:4860::8888",
        "2001:4860:4860::8844",
        "2606:4700:4700::1111",
        "2606:4700:4700::1001",
        "2620:fe::fe",
        "2620:fe::9",
    )
)


def normalize_domain(domain: str) -> str:
    """Return the fully-qualified form of a domain name.

    Args:
        domain: Domain name with or without trailing dot

    Returns:
        Domain with exactly one trailing dot

    Raises:
        InputError: If the domain is empty

    Examples:
        >>> normalize_domain("example.com")
        'example.com.'
        >>> normalize_domain(" example.com. ")
        'example.com.'
    """
    name = domain.strip().rstrip(".")
    if not name:
        msg = "Domain name must not be empty"
        raise InputError(msg)
    return f"{name}."


def detect_pollution(
    system_addresses: frozenset[IPAddress],
    reference_addresses: frozenset[IPAddress],
    allow_list: frozenset[IPAddress] = PUBLIC_DNS_ALLOW_LIST,
) -> bool:
    """Classify a pair of answer sets.

    No verdict is possible when either side is empty, which counts as clean.

    Examples:
        >>> a = frozenset({ipaddress.ip_address("1.1.1.1")})
        >>> b = frozenset({ipaddress.ip_address("203.0.113.9")})
        >>> detect_pollution(a, a)
        False
        >>> detect_pollution(b, a)
        True
        >>> detect_pollution(frozenset(), a)
        False
    """
    if not system_addresses or not reference_addresses:
        return False
    accepted = reference_addresses | allow_list
    return not system_addresses <= accepted


async def resolve_addresses(resolver: Resolver, qname: str) -> frozenset[IPAddress]:
    """Resolve A records, falling back to AAAA only when A is empty.

    Raises:
        ResolutionError: If either query fails
    """
    addresses = await resolver.resolve(qname, "A")
    if addresses:
        return addresses
    return await resolver.resolve(qname, "AAAA")


class Comparator:
    """Compare system and reference resolution of domain names."""

    def __init__(
        self,
        system_resolver: Resolver,
        reference_resolver: Resolver,
        *,
        allow_list: Iterable[IPAddress] = PUBLIC_DNS_ALLOW_LIST,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._system: Resolver = system_resolver
        self._reference: Resolver = reference_resolver
        self._allow_list: frozenset[IPAddress] = frozenset(allow_list)
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    @property
    def allow_list(self) -> frozenset[IPAddress]:
        return self._allow_list

    async def compare(self, domain: str) -> ComparisonResult:
        """Resolve domain through both resolvers and classify the answers.

        Args:
            domain: Domain name, with or without trailing dot

        Returns:
            Comparison result carrying the unqualified domain

        Raises:
            InputError: If the domain is empty
            ResolutionError: If either resolver fails
        """
        qname = normalize_domain(domain)
        display = qname.rstrip(".")

        system_addresses = await resolve_addresses(self._system, qname)
        reference_addresses = await resolve_addresses(self._reference, qname)

        polluted = detect_pollution(system_addresses, reference_addresses, self._allow_list)
        detail = _describe(system_addresses, reference_addresses, polluted=polluted)

        log_with_context(
            self._logger,
            logging.INFO,
            "Pollution check finished",
            extra={
                "domain": display,
                "polluted": polluted,
                "system_addresses": len(system_addresses),
                "reference_addresses": len(reference_addresses),
            },
        )

        return ComparisonResult(
            domain=display,
            system_addresses=system_addresses,
            reference_addresses=reference_addresses,
            polluted=polluted,
            detail=detail,
        )


def _describe(
    system_addresses: frozenset[IPAddress],
    reference_addresses: frozenset[IPAddress],
    *,
    polluted: bool,
) -> str:
    if not system_addresses or not reference_addresses:
        return (
            "Nothing to compare: "
            f"system DNS returned {format_addresses(system_addresses)}, "
            f"public DNS returned {format_addresses(reference_addresses)}"
        )
    if polluted:
        return (
            f"System DNS returned: {format_addresses(system_addresses)}, "
            f"Public DNS returned: {format_addresses(reference_addresses)}"
        )
    return f"Both returned similar results: {format_addresses(reference_addresses)}"
