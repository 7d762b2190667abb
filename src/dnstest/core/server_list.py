"""DNS server list loading, merging and export.

Server lists are JSON documents of the form::

    {"list": [{"name": "Google", "IP": "8.8.8.8"}, ...]}

Extra keys on entries (for example cached delay or status) are ignored.
This module turns such documents into validated, deduplicated Endpoint
sequences for the probe pipeline.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import tempfile
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Annotated, Final

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dnstest.core.errors import InputError, ServerListError
from dnstest.types import Endpoint
from dnstest.utils.http_client import AIOHTTPClient
from dnstest.utils.logging import get_logger, log_with_context

__all__ = [
    "IPV4_LIST_FILENAME",
    "IPV6_LIST_FILENAME",
    "ServerEntry",
    "ServerList",
    "download_server_list",
    "export",
    "filter_family",
    "from_args",
    "load_all",
    "load_from_file",
    "merge",
    "parse_server_list",
]

IPV4_LIST_FILENAME: Final[str] = "dnslist.json"
IPV6_LIST_FILENAME: Final[str] = "dnslist-v6.json"

logger = get_logger(__name__)


class ServerEntry(BaseModel):
    """One DNS server entry."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Annotated[str, Field(description="Display name")]
    ip: Annotated[str, Field(alias="IP", description="IPv4 or IPv6 address literal")]

    def to_endpoint(self) -> Endpoint:
        return Endpoint(name=self.name, address=self.ip.strip())


class ServerList(BaseModel):
    """A DNS server list document."""

    model_config = ConfigDict(extra="ignore")

    servers: Annotated[
        list[ServerEntry],
        Field(alias="list", description="Server entries"),
    ] = []

    def endpoints(self) -> list[Endpoint]:
        return [entry.to_endpoint() for entry in self.servers]


def parse_server_list(text: str, *, source: str) -> list[Endpoint]:
    """Parse a server list document.

    Args:
        text: JSON document text
        source: File path or URL, used in error messages

    Returns:
        Endpoints in document order

    Raises:
        ServerListError: If the text is not a valid server list
    """
    try:
        document = ServerList.model_validate_json(text)
    except ValidationError as e:
        error_lines = [f"Invalid DNS server list: {source}", ""]
        for error in e.errors():
            field_path = " → ".join(str(loc) for loc in error["loc"])
            error_lines.append(f"  Field: {field_path}")
            error_lines.append(f"  Error: {error['msg']}")
        msg = "\n".join(error_lines)
        raise ServerListError(msg) from e
    return document.endpoints()


def load_from_file(path: Path) -> list[Endpoint]:
    """Load a server list from a JSON file.

    Raises:
        ServerListError: If the file cannot be read or is not a valid list
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Failed to read DNS server list: {path}\nError: {e}"
        raise ServerListError(msg) from e
    return parse_server_list(text, source=str(path))


def load_all(config_dir: Path) -> list[list[Endpoint]]:
    """Load the IPv4 and IPv6 lists found in the configuration directory.

    Files that are missing or unreadable are skipped with a warning.

    Args:
        config_dir: Directory holding dnslist.json and dnslist-v6.json

    Returns:
        One endpoint list per file that loaded

    Raises:
        ServerListError: If neither list could be loaded
    """
    lists: list[list[Endpoint]] = []
    for filename in (IPV4_LIST_FILENAME, IPV6_LIST_FILENAME):
        path = config_dir / filename
        if not path.exists():
            continue
        try:
            lists.append(load_from_file(path))
        except ServerListError as exc:
            log_with_context(
                logger,
                logging.WARNING,
                "Skipping unusable DNS server list",
                extra={"path": str(path), "error": str(exc)},
            )

    if not lists:
        msg = "No DNS list found. Please run 'dnstest update' first."
        raise ServerListError(msg)
    return lists


def merge(lists: Iterable[Sequence[Endpoint]]) -> list[Endpoint]:
    """Combine several lists, keeping the first entry for each address.

    The result is sorted by address string.

    Examples:
        >>> a = [Endpoint("Google", "8.8.8.8"), Endpoint("CF", "1.1.1.1")]
        >>> b = [Endpoint("Google again", "8.8.8.8")]
        >>> [e.name for e in merge([a, b])]
        ['CF', 'Google']
    """
    seen: dict[str, Endpoint] = {}
    for endpoints in lists:
        for endpoint in endpoints:
            _ = seen.setdefault(endpoint.address, endpoint)
    return sorted(seen.values(), key=lambda endpoint: endpoint.address)


def from_args(values: Iterable[str]) -> list[Endpoint]:
    """Build endpoints from "IP#Name" strings; the name defaults to the IP.

    Raises:
        InputError: If an IP part is not an address literal

    Examples:
        >>> from_args(["8.8.8.8#Google", "1.1.1.1"])
        [Endpoint(name='Google', address='8.8.8.8'), Endpoint(name='1.1.1.1', address='1.1.1.1')]
    """
    endpoints: list[Endpoint] = []
    for value in values:
        ip, _, name = value.partition("#")
        ip = ip.strip()
        try:
            _ = ipaddress.ip_address(ip)
        except ValueError:
            msg = f"Invalid IP address: {ip}"
            raise InputError(msg) from None
        endpoints.append(Endpoint(name=name.strip() or ip, address=ip))
    return endpoints


def filter_family(endpoints: Iterable[Endpoint], *, ipv4: bool = True, ipv6: bool = True) -> list[Endpoint]:
    """Keep endpoints of the selected address families.

    Entries whose address does not parse are kept only when both families
    are selected, so listing shows them and probing reports them.
    """
    kept: list[Endpoint] = []
    for endpoint in endpoints:
        if endpoint.is_ipv4:
            if ipv4:
                kept.append(endpoint)
        elif endpoint.is_ipv6:
            if ipv6:
                kept.append(endpoint)
        elif ipv4 and ipv6:
            kept.append(endpoint)
    return kept


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            _ = f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def export(endpoints: Iterable[Endpoint], path: Path) -> int:
    """Write endpoints as a server list document.

    Returns:
        Number of entries written

    Raises:
        ServerListError: If the file cannot be written
    """
    document = ServerList(list=[ServerEntry(name=e.name, ip=e.address) for e in endpoints])
    text = json.dumps(document.model_dump(by_alias=True), indent=2, ensure_ascii=False) + "\n"
    try:
        _write_atomic(path, text)
    except OSError as e:
        msg = f"Failed to write DNS server list: {path}\nError: {e}"
        raise ServerListError(msg) from e
    return len(document.servers)


async def download_server_list(url: str, output: Path, *, client: AIOHTTPClient | None = None) -> int:
    """Download a server list, validate it and save it.

    Args:
        url: Location of the JSON server list
        output: File to write
        client: HTTP client to use (default: a new AIOHTTPClient)

    Returns:
        Number of entries written

    Raises:
        ServerListError: If the download fails, the document is invalid,
            or the file cannot be written
    """
    http = client or AIOHTTPClient()
    try:
        async with http:
            response = await http.get_with_retry(url)
    except (RuntimeError, TimeoutError, ValueError, OSError, aiohttp.ClientError) as e:
        msg = f"Failed to download DNS server list from {url}: {str(e) or type(e).__name__}"
        raise ServerListError(msg) from e

    endpoints = parse_server_list(response.body, source=url)
    count = export(endpoints, output)
    log_with_context(
        logger,
        logging.INFO,
        "DNS server list updated",
        extra={"url": url, "path": str(output), "servers": count},
    )
    return count
