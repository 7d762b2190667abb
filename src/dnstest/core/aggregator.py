"""Pure aggregation functions for probe outcomes.

This module folds ProbeOutcome values into RunSummary statistics. All
functions are pure with no side effects: fold returns a new summary and
never mutates its input, so a summary can be safely shared or kept as a
snapshot of the run so far.
"""

from collections.abc import Iterable
from dataclasses import replace

from dnstest.types.models import ProbeOutcome, RunSummary


def fold(summary: RunSummary, outcome: ProbeOutcome) -> RunSummary:
    """Fold one outcome into a running summary.

    Successful outcomes update the mean with the incremental form
    new_avg = old_avg + (latency - old_avg) / n, which stays O(1) per
    update and avoids accumulating a large running sum.

    Args:
        summary: Summary of the outcomes folded so far
        outcome: Next outcome

    Returns:
        New summary including the outcome

    Examples:
        >>> from dnstest.types.models import Endpoint
        >>> ep = Endpoint("a", "192.0.2.1")
        >>> s = fold(RunSummary(), ProbeOutcome.success(ep, 10.0))
        >>> s = fold(s, ProbeOutcome.success(ep, 20.0))
        >>> (s.total, s.succeeded, s.avg_latency_ms)
        (2, 2, 15.0)
    """
    total = summary.total + 1

    if outcome.succeeded and outcome.latency_ms is not None:
        latency = outcome.latency_ms
        succeeded = summary.succeeded + 1
        if summary.avg_latency_ms is None:
            avg = latency
        else:
            avg = summary.avg_latency_ms + (latency - summary.avg_latency_ms) / succeeded
        return replace(
            summary,
            total=total,
            succeeded=succeeded,
            avg_latency_ms=avg,
            min_latency_ms=latency if summary.min_latency_ms is None else min(summary.min_latency_ms, latency),
            max_latency_ms=latency if summary.max_latency_ms is None else max(summary.max_latency_ms, latency),
        )

    if outcome.is_timeout:
        return replace(summary, total=total, timed_out=summary.timed_out + 1)

    return replace(summary, total=total, failed=summary.failed + 1)


def summarize(outcomes: Iterable[ProbeOutcome]) -> RunSummary:
    """Fold a whole sequence of outcomes into a fresh summary.

    Examples:
        >>> summarize([]).total
        0
    """
    summary = RunSummary()
    for outcome in outcomes:
        summary = fold(summary, outcome)
    return summary


def success_rate(summary: RunSummary) -> float:
    """Percentage of successful outcomes, 0.0 for an empty summary."""
    return summary.success_rate()
