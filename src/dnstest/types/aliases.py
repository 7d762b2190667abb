"""Progress event types and aliases using modern PEP 695 syntax.

The scheduler communicates with its consumer exclusively through these
immutable messages.
"""

from dataclasses import dataclass

from dnstest.types.models import ProbeOutcome


@dataclass(slots=True, frozen=True)
class OutcomeEvent:
    """A single endpoint finished probing."""

    outcome: ProbeOutcome


@dataclass(slots=True, frozen=True)
class TickEvent:
    """Progress counter, sent right after the OutcomeEvent it counts."""

    tested: int
    total: int


@dataclass(slots=True, frozen=True)
class DoneEvent:
    """Terminates a run's event stream. Sent exactly once per run."""


# Tagged union of everything a scheduler run can emit
type ProgressEvent = OutcomeEvent | TickEvent | DoneEvent
