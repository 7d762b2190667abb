"""Pure formatting utilities for human-readable output.

This module provides stateless formatting functions shared by the static
reports and the interactive view. All functions are pure with no side
effects.
"""

from collections.abc import Iterable

from dnstest.types.models import IPAddress, ProbeOutcome

# Width of the latency bar at and beyond the bar ceiling
_BAR_WIDTH = 20
_BAR_CEILING_MS = 200.0


def format_latency(latency_ms: float | None, *, precision: int = 1) -> str:
    """Format a latency value in milliseconds.

    Args:
        latency_ms: Latency in milliseconds, or None when unavailable
        precision: Number of decimal places (default: 1)

    Returns:
        "12.3 ms" style string, or "Timeout" when latency is None

    Examples:
        >>> format_latency(12.345)
        '12.3 ms'
        >>> format_latency(None)
        'Timeout'
    """
    if latency_ms is None:
        return "Timeout"
    return f"{latency_ms:.{precision}f} ms"


def format_percent(value: float, *, precision: int = 1) -> str:
    """Format a percentage value.

    Examples:
        >>> format_percent(66.6666)
        '66.7%'
    """
    return f"{value:.{precision}f}%"


def format_addresses(addresses: Iterable[IPAddress]) -> str:
    """Format a set of addresses in a stable order.

    IPv4 addresses sort before IPv6 addresses.

    Examples:
        >>> from ipaddress import ip_address
        >>> format_addresses({ip_address("8.8.8.8"), ip_address("1.1.1.1")})
        '[1.1.1.1, 8.8.8.8]'
    """
    ordered = sorted(addresses, key=lambda ip: (ip.version, int(ip)))
    return "[" + ", ".join(str(ip) for ip in ordered) + "]"


def format_outcome_status(outcome: ProbeOutcome) -> str:
    """Short status label for an outcome: OK, Timeout or Failed."""
    if outcome.succeeded:
        return "OK"
    if outcome.is_timeout:
        return "Timeout"
    return "Failed"


def latency_bar(latency_ms: float | None) -> str:
    """Render latency as a proportional bar, saturating at 200 ms."""
    if latency_ms is None:
        return ""
    length = int(min(latency_ms / _BAR_CEILING_MS * _BAR_WIDTH, _BAR_WIDTH))
    return "█" * max(length, 0)
