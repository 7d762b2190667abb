"""Interactive live view of a probe run.

LiveState is the only owner of presentation state. Probe tasks never touch
it; they send events over the progress channel, and the view loop folds
whatever is pending into the state on every refresh tick.
"""

from __future__ import annotations

import asyncio
import os
import select
import sys
import termios
import tty
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Self, TextIO

import click

from dnstest.core.aggregator import fold
from dnstest.core.channel import ProgressChannel
from dnstest.core.pipeline import run_streaming
from dnstest.core.scheduler import DEFAULT_CONCURRENCY_LIMIT, DEFAULT_GLOBAL_DEADLINE
from dnstest.types import (
    DoneEvent,
    Endpoint,
    OutcomeEvent,
    ProbeOutcome,
    Prober,
    ProgressEvent,
    RunSummary,
    TickEvent,
)
from dnstest.utils.formatting import format_latency, format_outcome_status, format_percent, latency_bar

__all__ = ["LiveState", "SortMode", "TerminalKeys", "render_frame", "run_live"]

DEFAULT_REFRESH_INTERVAL = 0.1
QUIT_KEY = "q"

# Cursor key escape sequences, read as the equivalent movement keys
_ESCAPE_SEQUENCES: dict[str, str] = {"\x1b[A": "k", "\x1b[B": "j", "\x1bOA": "k", "\x1bOB": "j"}

type KeySource = Callable[[], str | None]
type FrameDrawer = Callable[["LiveState"], None]


class SortMode(StrEnum):
    """Result ordering in the live view, cycled with the s key."""

    LATENCY = "latency"
    NAME = "name"
    STATUS = "status"

    def next(self) -> SortMode:
        order = list(SortMode)
        return order[(order.index(self) + 1) % len(order)]


def _sort_key(mode: SortMode) -> Callable[[ProbeOutcome], tuple[object, ...]]:
    match mode:
        case SortMode.NAME:
            return lambda o: (o.endpoint.name,)
        case SortMode.STATUS:
            return lambda o: (not o.succeeded,)
        case _:
            return lambda o: (o.latency_ms is None, o.latency_ms or 0.0)


@dataclass(slots=True)
class LiveState:
    """Presentation state of one live run."""

    results: list[ProbeOutcome] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)
    tested: int = 0
    total: int = 0
    busy: bool = True
    sort_mode: SortMode = SortMode.LATENCY
    selected: Endpoint | None = None

    @property
    def selected_index(self) -> int:
        """Row of the selected endpoint under the current ordering."""
        for index, outcome in enumerate(self.results):
            if outcome.endpoint == self.selected:
                return index
        return 0

    def apply(self, event: ProgressEvent) -> None:
        """Fold one progress event into the state."""
        match event:
            case OutcomeEvent(outcome=outcome):
                self.results.append(outcome)
                self.summary = fold(self.summary, outcome)
                self._sort()
                if self.selected is None:
                    self.selected = outcome.endpoint
            case TickEvent(tested=tested, total=total):
                self.tested = max(self.tested, tested)
                self.total = total
            case DoneEvent():
                self.busy = False

    def poll(self, channel: ProgressChannel) -> int:
        """Apply every pending event without blocking.

        Returns:
            Number of events applied
        """
        events = channel.drain()
        for event in events:
            self.apply(event)
        return len(events)

    def cycle_sort_mode(self) -> None:
        self.sort_mode = self.sort_mode.next()
        self._sort()

    def move_selection(self, delta: int) -> None:
        """Move the selection by delta rows, clamped to the result list."""
        if not self.results:
            return
        index = min(max(self.selected_index + delta, 0), len(self.results) - 1)
        self.selected = self.results[index].endpoint

    def handle_key(self, key: str) -> bool:
        """React to a key press.

        Returns:
            False when the key asks to quit, True otherwise
        """
        match key:
            case "q" | "Q":
                return False
            case "s":
                self.cycle_sort_mode()
            case "j":
                self.move_selection(1)
            case "k":
                self.move_selection(-1)
            case _:
                pass
        return True

    def _sort(self) -> None:
        self.results.sort(key=_sort_key(self.sort_mode))


def render_frame(state: LiveState) -> str:
    """Render the state as one text frame."""
    if state.busy:
        progress = f"Testing... {state.tested}/{state.total}"
    else:
        progress = f"Done: {state.tested}/{state.total} tested"
    lines = [f"{progress}    Sort by: {state.sort_mode.value.capitalize()} [s]", ""]

    for index, outcome in enumerate(state.results):
        marker = ">" if index == state.selected_index else " "
        status = format_outcome_status(outcome)
        color = "green" if outcome.succeeded else ("yellow" if outcome.is_timeout else "red")
        row = (
            f"{marker} {outcome.endpoint.name:<24} {outcome.endpoint.address:<40} "
            f"{format_latency(outcome.latency_ms):>10}  {latency_bar(outcome.latency_ms)}"
        )
        lines.append(row + " " + click.style(status, fg=color))

    summary = state.summary
    lines.append("")
    lines.append(
        f"Success: {summary.succeeded}  Failed: {summary.failed}  Timeout: {summary.timed_out}  "
        f"Rate: {format_percent(summary.success_rate())}  "
        f"Avg: {format_latency(summary.avg_latency_ms)}  "
        f"Min: {format_latency(summary.min_latency_ms)}  "
        f"Max: {format_latency(summary.max_latency_ms)}"
    )
    return "\n".join(lines)


class TerminalKeys:
    """Non-blocking key reader over stdin, used as a context manager.

    A terminal is switched to cbreak mode on entry, so keys arrive without
    Enter and are not echoed, and restored on exit. End of input reads as
    the quit key.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream: TextIO = stream if stream is not None else sys.stdin
        self._fd: int | None = None
        self._saved_mode: list[object] | None = None
        self._pending: deque[str] = deque()
        self._eof: bool = False

    def __enter__(self) -> Self:
        try:
            self._fd = self._stream.fileno()
        except (OSError, ValueError):
            # In-memory stream: reads never block
            self._fd = None
            return self
        if os.isatty(self._fd):
            self._saved_mode = termios.tcgetattr(self._fd)
            tty.setcbreak(self._fd)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._fd is not None and self._saved_mode is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_mode)
            self._saved_mode = None

    def __call__(self) -> str | None:
        """Return the next pending key, or None if no key is waiting."""
        if not self._pending and not self._eof:
            self._read_available()
        if self._pending:
            return self._pending.popleft()
        return QUIT_KEY if self._eof else None

    def _read_available(self) -> None:
        if self._fd is None:
            text = self._stream.read()
        else:
            ready, _, _ = select.select([self._fd], [], [], 0)
            if not ready:
                return
            text = os.read(self._fd, 32).decode(errors="replace")
        if not text:
            self._eof = True
            return
        while text:
            for sequence, key in _ESCAPE_SEQUENCES.items():
                if text.startswith(sequence):
                    self._pending.append(key)
                    text = text[len(sequence) :]
                    break
            else:
                self._pending.append(text[0])
                text = text[1:]


def _draw_terminal(state: LiveState) -> None:
    click.clear()
    click.echo(render_frame(state))


async def run_live(
    endpoints: Sequence[Endpoint],
    *,
    prober: Prober,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    global_deadline: float = DEFAULT_GLOBAL_DEADLINE,
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
    sort_mode: SortMode = SortMode.LATENCY,
    draw: FrameDrawer | None = None,
    keys: KeySource | None = None,
) -> LiveState:
    """Run a probe batch while redrawing its progress on every tick.

    Args:
        endpoints: Endpoints to probe
        prober: Prober to fan the endpoints out to
        concurrency_limit: Maximum probes in flight
        global_deadline: Seconds allowed for the whole run
        refresh_interval: Seconds between redraws
        sort_mode: Initial result ordering
        draw: Frame drawer (default: clear the terminal and print the frame)
        keys: Non-blocking key reader returning None when no key is pending.
            With a key reader the view stays open after the run is done
            until a quit key arrives; without one it returns at DoneEvent.

    Returns:
        Final state
    """
    state = LiveState(total=len(endpoints), sort_mode=sort_mode)
    redraw = draw or _draw_terminal
    channel = run_streaming(
        endpoints,
        prober=prober,
        concurrency_limit=concurrency_limit,
        global_deadline=global_deadline,
    )

    redraw(state)
    while True:
        changed = state.poll(channel) > 0
        if keys is not None:
            while (key := keys()) is not None:
                if not state.handle_key(key):
                    if changed:
                        redraw(state)
                    return state
                changed = True
        if changed:
            redraw(state)
        if keys is None and not state.busy:
            return state
        await asyncio.sleep(refresh_interval)
