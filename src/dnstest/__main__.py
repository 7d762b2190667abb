"""Application entry point for dnstest."""

from __future__ import annotations

from dnstest.app.cli import cli

__all__ = ["main"]


def main() -> None:
    """Run the command-line interface."""
    cli(prog_name="dnstest")


if __name__ == "__main__":
    main()
