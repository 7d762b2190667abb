"""Static rendering of probe results, summaries and comparisons.

Every renderer returns text; printing is left to the caller so output
can go to stdout, a pager or a test assertion alike.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Sequence

from dnstest.core.config import OutputFormat
from dnstest.types import ComparisonResult, Endpoint, ProbeOutcome, RunSummary
from dnstest.utils.formatting import format_addresses, format_latency, format_percent

__all__ = [
    "render_comparison",
    "render_outcomes",
    "render_server_list",
    "render_summary",
    "sort_by_latency",
]

_TABLE_RULE = "-" * 60


def sort_by_latency(outcomes: Iterable[ProbeOutcome]) -> list[ProbeOutcome]:
    """Order outcomes by latency, fastest first, with failures last."""
    return sorted(
        outcomes,
        key=lambda o: (o.latency_ms is None, o.latency_ms if o.latency_ms is not None else 0.0),
    )


def _outcome_row(index: int, outcome: ProbeOutcome) -> list[str]:
    latency = outcome.latency_ms if outcome.latency_ms is not None else -1.0
    return [
        str(index),
        outcome.endpoint.name,
        outcome.endpoint.address,
        f"{latency:.1f}",
        "true" if outcome.succeeded else "false",
    ]


def _render_delimited(outcomes: Sequence[ProbeOutcome], delimiter: str) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    header_index = "#Idx" if delimiter == "," else "#"
    writer.writerow([header_index, "Name", "IP", "Latency(ms)", "Success"])
    for index, outcome in enumerate(outcomes, start=1):
        writer.writerow(_outcome_row(index, outcome))
    return buffer.getvalue().rstrip("\n")


def _outcome_to_dict(outcome: ProbeOutcome) -> dict[str, object]:
    return {
        "server": {"name": outcome.endpoint.name, "ip": outcome.endpoint.address},
        "latency_ms": outcome.latency_ms,
        "packet_loss": outcome.packet_loss,
        "success": outcome.succeeded,
        "failure_reason": outcome.failure_reason,
    }


def render_outcomes(outcomes: Sequence[ProbeOutcome], fmt: OutputFormat = "table") -> str:
    """Render probe outcomes.

    Args:
        outcomes: Outcomes in display order
        fmt: One of table, json, csv, tsv

    Returns:
        Rendered text without trailing newline
    """
    match fmt:
        case "json":
            return json.dumps([_outcome_to_dict(o) for o in outcomes], indent=2, ensure_ascii=False)
        case "csv":
            return _render_delimited(outcomes, ",")
        case "tsv":
            return _render_delimited(outcomes, "\t")
        case _:
            lines = [f"{'#':<4} {'Name':<24} {'IP':<40} {'Latency':<12}", _TABLE_RULE]
            for index, outcome in enumerate(outcomes, start=1):
                status = "" if outcome.succeeded else "[failed] "
                latency = format_latency(outcome.latency_ms)
                if not outcome.succeeded and not outcome.is_timeout:
                    latency = outcome.failure_reason or "failed"
                lines.append(
                    f"{index:<4} {status + outcome.endpoint.name:<24} {outcome.endpoint.address:<40} {latency:<12}"
                )
            return "\n".join(lines)


def render_summary(summary: RunSummary) -> str:
    """Render the statistics block printed after a batch run."""
    lines = [
        "=== Summary ===",
        f"Total servers: {summary.total}",
        f"Succeeded: {summary.succeeded} ({format_percent(summary.success_rate())})",
        f"Failed/timeout: {summary.failed + summary.timed_out}",
    ]
    if summary.avg_latency_ms is not None:
        lines.append(f"Average latency: {summary.avg_latency_ms:.2f} ms")
    if summary.min_latency_ms is not None:
        lines.append(f"Lowest latency: {summary.min_latency_ms:.2f} ms")
    if summary.max_latency_ms is not None:
        lines.append(f"Highest latency: {summary.max_latency_ms:.2f} ms")
    return "\n".join(lines)


def _comparison_to_dict(result: ComparisonResult) -> dict[str, object]:
    return {
        "domain": result.domain,
        "system_ips": [str(ip) for ip in sorted(result.system_addresses, key=lambda ip: (ip.version, int(ip)))],
        "public_ips": [str(ip) for ip in sorted(result.reference_addresses, key=lambda ip: (ip.version, int(ip)))],
        "is_polluted": result.polluted,
        "details": result.detail,
    }


def render_comparison(result: ComparisonResult, fmt: OutputFormat = "table") -> str:
    """Render one pollution check result."""
    if fmt == "json":
        return json.dumps(_comparison_to_dict(result), indent=2)
    return "\n".join(
        [
            f"Domain: {result.domain}",
            f"System DNS: {format_addresses(result.system_addresses)}",
            f"Public DNS: {format_addresses(result.reference_addresses)}",
            f"Pollution: {'possibly polluted' if result.polluted else 'clean'}",
            f"Details: {result.detail}",
        ]
    )


def render_server_list(endpoints: Sequence[Endpoint]) -> str:
    """Render a DNS server listing."""
    lines = [
        f"DNS servers ({len(endpoints)} total):",
        "",
        f"{'#':<4} {'Name':<24} {'IP':<40}",
        "-" * 50,
    ]
    for index, endpoint in enumerate(endpoints, start=1):
        lines.append(f"{index:<4} {endpoint.name:<24} {endpoint.address:<40}")
    return "\n".join(lines)
