"""Command-line interface for dnstest."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import click

from dnstest.app.live import SortMode, TerminalKeys, run_live
from dnstest.app.report import (
    render_comparison,
    render_outcomes,
    render_server_list,
    render_summary,
    sort_by_latency,
)
from dnstest.core import server_list
from dnstest.core.aggregator import summarize
from dnstest.core.config import (
    MainConfig,
    OutputFormat,
    discover_config_file,
    load_main_config,
)
from dnstest.core.errors import DnsTestError
from dnstest.core.icmp import IcmpEchoTransport
from dnstest.core.pipeline import build_prober, check_pollution, check_pollution_batch, run_batch, run_until_done
from dnstest.core.resolvers import DnsPythonResolver
from dnstest.types import Endpoint
from dnstest.utils.logging import VALID_LOG_LEVELS, configure_logging, get_logger

logger = get_logger(__name__)

OUTPUT_FORMATS: tuple[OutputFormat, ...] = ("table", "json", "csv", "tsv")

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("dnstest")
except PackageNotFoundError:
    __version__ = "unknown"


@dataclass(slots=True)
class CliContext:
    """Settings resolved by the command group and shared with subcommands."""

    config: MainConfig
    output_format: OutputFormat


def validate_log_level(
    ctx: click.Context,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    param: click.Parameter,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    value: str | None,
) -> str | None:
    """Validate and normalize log level.

    Raises:
        click.BadParameter: If the level is unknown
    """
    if value is None:
        return value

    normalized_value = value.upper().strip()
    if normalized_value not in VALID_LOG_LEVELS:
        raise click.BadParameter(
            f'Invalid log level "{value}". Valid options: {", ".join(sorted(VALID_LOG_LEVELS))}'
        )
    return normalized_value


@contextmanager
def user_errors() -> Iterator[None]:
    """Report application errors as click errors (exit code 1)."""
    try:
        yield
    except DnsTestError as e:
        raise click.ClickException(str(e)) from e


def _load_config(path: Path | None) -> MainConfig:
    config_path = path if path is not None else discover_config_file()
    if config_path is None:
        return MainConfig()
    return load_main_config(config_path)


def _resolve_endpoints(
    config: MainConfig,
    file: Path | None,
    dns_servers: Sequence[str] = (),
) -> list[Endpoint]:
    if dns_servers:
        return server_list.merge([server_list.from_args(dns_servers)])
    if file is not None:
        return server_list.merge([server_list.load_from_file(file)])
    return server_list.merge(server_list.load_all(config.lists.config_dir))


def _read_domains(path: Path) -> list[str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise click.ClickException(f"Failed to read domain file {path}: {e}") from e
    domains = [line.strip() for line in lines]
    return [domain for domain in domains if domain and not domain.startswith("#")]


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Configuration file path. If not specified, searches standard locations.",
)
@click.option(
    "--log-level",
    "-l",
    type=str,
    default=None,
    callback=validate_log_level,
    help="Logging verbosity level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default=None,
    help="Report format (default: from configuration, else table)",
)
@click.version_option(version=__version__, prog_name="dnstest")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    verbose: bool,
    quiet: bool,
    output_format: OutputFormat | None,
) -> None:
    """dnstest - DNS server latency and pollution tester.

    Probes DNS servers with ICMP echo to measure reachability and latency,
    and compares system DNS answers with public resolvers to detect
    tampering.

    Examples:

        # Open the live view over the saved server lists
        dnstest

        # Test two servers and print CSV
        dnstest --format csv speed --dns 8.8.8.8#Google --dns 1.1.1.1#Cloudflare

        # Check a domain for DNS pollution
        dnstest check --domain example.com
    """
    with user_errors():
        config = _load_config(config_path)

    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    else:
        level = log_level or config.application.log_level
    configure_logging(log_level=level)

    ctx.obj = CliContext(config=config, output_format=output_format or config.application.output_format)

    if ctx.invoked_subcommand is None:
        ctx.invoke(interactive)


@cli.command()
@click.option("--file", "-f", "file", type=click.Path(path_type=Path, dir_okay=False), help="DNS list file")
@click.option("--dns", "-d", "dns_servers", multiple=True, help="DNS server as IP#Name (repeatable)")
@click.option("--count", "-n", type=click.IntRange(min=1), default=None, help="Echo rounds per server")
@click.option("--timeout", "-t", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds per echo round")
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Maximum servers probed at once")
@click.option("--deadline", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds allowed for the whole run")
@click.option("--sort", "-s", "sort_results", is_flag=True, help="Sort results by latency")
@click.pass_obj
def speed(
    obj: CliContext,
    file: Path | None,
    dns_servers: tuple[str, ...],
    count: int | None,
    timeout: float | None,
    concurrency: int | None,
    deadline: float | None,
    sort_results: bool,
) -> None:
    """Measure ICMP latency of DNS servers."""
    probing = obj.config.probing
    with user_errors():
        endpoints = _resolve_endpoints(obj.config, file, dns_servers)
        transport = IcmpEchoTransport(privileged=probing.privileged)
        transport.verify()
        prober = build_prober(
            attempts=count or probing.attempts,
            per_attempt_timeout=timeout or probing.per_attempt_timeout,
            payload_size=probing.payload_size,
            transport=transport,
        )
        outcomes = run_batch(
            endpoints,
            concurrency_limit=concurrency or probing.concurrency_limit,
            global_deadline=deadline or probing.global_deadline,
            prober=prober,
        )

    summary = summarize(outcomes)
    untested = len(endpoints) - summary.total
    if sort_results:
        outcomes = sort_by_latency(outcomes)

    click.echo(render_outcomes(outcomes, obj.output_format))
    # Keep machine-readable formats parseable on stdout
    to_stderr = obj.output_format != "table"
    click.echo("", err=to_stderr)
    click.echo(render_summary(summary), err=to_stderr)
    if untested:
        click.echo(f"Not tested before the deadline: {untested}", err=True)


@cli.command()
@click.option("--domain", "-d", default=None, help="Domain to check (default: from configuration)")
@click.option("--file", "-f", "file", type=click.Path(path_type=Path, dir_okay=False), help="File with one domain per line")
@click.pass_obj
def check(obj: CliContext, domain: str | None, file: Path | None) -> None:
    """Check domains for DNS pollution."""
    pollution = obj.config.pollution
    with user_errors():
        system = DnsPythonResolver.system(timeout=pollution.resolver_timeout)
        reference = DnsPythonResolver.reference(pollution.reference_resolvers, timeout=pollution.resolver_timeout)
        allow_list = pollution.allow_list_addresses()

        if file is None:
            result = check_pollution(domain or pollution.default_domain, system, reference, allow_list=allow_list)
            click.echo(render_comparison(result, obj.output_format))
            return

        domains = _read_domains(file)
        results, failures = asyncio.run(check_pollution_batch(domains, system, reference, allow_list=allow_list))

    for index, result in enumerate(results):
        if index:
            click.echo("")
        click.echo(render_comparison(result, obj.output_format))
    for failed_domain, error in failures:
        click.echo(f"Error: {failed_domain}: {error}", err=True)
    if failures:
        raise click.exceptions.Exit(1)


@cli.command(name="list")
@click.option("--file", "-f", "file", type=click.Path(path_type=Path, dir_okay=False), help="DNS list file")
@click.option("--ipv4", "ipv4_only", is_flag=True, help="Show only IPv4 servers")
@click.option("--ipv6", "ipv6_only", is_flag=True, help="Show only IPv6 servers")
@click.pass_obj
def list_servers(obj: CliContext, file: Path | None, ipv4_only: bool, ipv6_only: bool) -> None:
    """List available DNS servers."""
    if ipv4_only and ipv6_only:
        raise click.UsageError("--ipv4 and --ipv6 are mutually exclusive")
    with user_errors():
        endpoints = _resolve_endpoints(obj.config, file)
    filtered = server_list.filter_family(endpoints, ipv4=not ipv6_only, ipv6=not ipv4_only)
    click.echo(render_server_list(filtered))


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("dnslist.json"),
    show_default=True,
    help="Output file path",
)
@click.option("--ipv6", "include_ipv6", is_flag=True, help="Include IPv6 servers in export")
@click.pass_obj
def export(obj: CliContext, output: Path, include_ipv6: bool) -> None:
    """Export the merged DNS server list to a JSON file."""
    with user_errors():
        endpoints = server_list.merge(server_list.load_all(obj.config.lists.config_dir))
        endpoints = server_list.filter_family(endpoints, ipv4=True, ipv6=include_ipv6)
        written = server_list.export(endpoints, output)
    click.echo(f"Exported {written} servers to: {output}")


@cli.command()
@click.option("--url", "-u", default=None, help="URL to download the DNS list from")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Output file path (default: dnslist.json in the list directory)",
)
@click.pass_obj
def update(obj: CliContext, url: str | None, output: Path | None) -> None:
    """Download the latest DNS server list."""
    source = url or obj.config.lists.update_url
    if not source:
        raise click.UsageError("No update URL configured; pass --url or set lists.update_url")
    target = output or obj.config.lists.config_dir / server_list.IPV4_LIST_FILENAME
    with user_errors():
        written = asyncio.run(server_list.download_server_list(source, target))
    click.echo(f"Saved {written} servers to: {target}")


@cli.command()
@click.option("--file", "-f", "file", type=click.Path(path_type=Path, dir_okay=False), help="DNS list file")
@click.option(
    "--sort",
    "sort_mode",
    type=click.Choice([mode.value for mode in SortMode]),
    default=SortMode.LATENCY.value,
    show_default=True,
    help="Initial result ordering",
)
@click.pass_obj
def interactive(obj: CliContext, file: Path | None = None, sort_mode: str = SortMode.LATENCY.value) -> None:
    """Probe servers with a live-updating view.

    Keys: s cycles the sort order, j/k or the arrow keys move the
    selection, q quits. The view stays open after the run finishes.
    """
    probing = obj.config.probing
    with user_errors():
        endpoints = _resolve_endpoints(obj.config, file)
        transport = IcmpEchoTransport(privileged=probing.privileged)
        transport.verify()
        prober = build_prober(
            attempts=probing.attempts,
            per_attempt_timeout=probing.per_attempt_timeout,
            payload_size=probing.payload_size,
            transport=transport,
        )

    try:
        with TerminalKeys() as keys:
            state = run_until_done(
                run_live(
                    endpoints,
                    prober=prober,
                    concurrency_limit=probing.concurrency_limit,
                    global_deadline=probing.global_deadline,
                    sort_mode=SortMode(sort_mode),
                    keys=keys,
                )
            )
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        return

    logger.debug("Live run finished with %d of %d servers tested", state.tested, state.total)
