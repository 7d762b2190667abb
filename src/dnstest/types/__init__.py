"""Type definitions and protocols for the dnstest application.

This package provides:
- Data models (immutable dataclasses)
- Progress events and type aliases (PEP 695 syntax)
- Protocol definitions (structural subtyping interfaces)
"""

from dnstest.types.aliases import (
    DoneEvent,
    OutcomeEvent,
    ProgressEvent,
    TickEvent,
)
from dnstest.types.models import (
    FAILURE_INVALID_ADDRESS,
    FAILURE_TIMEOUT,
    FAILURE_UNSUPPORTED_FAMILY,
    ComparisonResult,
    Endpoint,
    IPAddress,
    ProbeOutcome,
    Response,
    RunSummary,
)
from dnstest.types.protocols import (
    EchoSession,
    EchoTransport,
    Prober,
    ProgressSink,
    RecordType,
    Resolver,
)

__all__ = [
    # Failure reasons
    "FAILURE_INVALID_ADDRESS",
    "FAILURE_TIMEOUT",
    "FAILURE_UNSUPPORTED_FAMILY",
    # Data models
    "ComparisonResult",
    "Endpoint",
    "IPAddress",
    "ProbeOutcome",
    "Response",
    "RunSummary",
    # Progress events
    "DoneEvent",
    "OutcomeEvent",
    "ProgressEvent",
    "TickEvent",
    # Protocols
    "EchoSession",
    "EchoTransport",
    "Prober",
    "ProgressSink",
    "RecordType",
    "Resolver",
]
