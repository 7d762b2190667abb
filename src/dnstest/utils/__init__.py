"""Shared utility modules for common operations.

This package provides:
- Pure formatting helpers for reports and the live view
- Logging setup with run id correlation
- The HTTP client used to download server lists
"""

from dnstest.utils.formatting import (
    format_addresses,
    format_latency,
    format_outcome_status,
    format_percent,
    latency_bar,
)

__all__ = [
    "format_addresses",
    "format_latency",
    "format_outcome_status",
    "format_percent",
    "latency_bar",
]
