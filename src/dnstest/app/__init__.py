"""Application layer: command-line interface, reports and live view."""

from __future__ import annotations

from dnstest.app.cli import cli

__all__ = [
    "cli",
]
