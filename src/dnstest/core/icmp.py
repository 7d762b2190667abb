"""ICMP echo transport backed by icmplib.

Each session owns one ICMPv4 socket wrapped in icmplib's AsyncSocket, so
concurrent probes never read each other's replies off a shared socket;
replies are matched to requests by identifier and sequence.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import override

from icmplib import AsyncSocket, ICMPLibError, ICMPRequest, ICMPv4Socket, TimeoutExceeded

from dnstest.core.errors import EchoError, ProbeTransportError
from dnstest.types import EchoSession
from dnstest.utils.logging import get_logger

__all__ = ["IcmpEchoSession", "IcmpEchoTransport"]


class IcmpEchoSession:
    """Echo session over one open icmplib AsyncSocket."""

    def __init__(self, sock: AsyncSocket) -> None:
        self._socket: AsyncSocket = sock

    async def echo(
        self,
        address: str,
        *,
        identifier: int,
        sequence: int,
        payload: bytes,
        timeout: float,
    ) -> None:
        request = ICMPRequest(
            destination=address,
            id=identifier,
            sequence=sequence,
            payload=payload,
        )
        try:
            self._socket.send(request)
            reply = await self._socket.receive(request, timeout)
            reply.raise_for_status()
        except TimeoutExceeded as exc:
            raise TimeoutError(f"No echo reply from {address} within {timeout:.2f}s") from exc
        except ICMPLibError as exc:
            raise EchoError(f"Echo to {address} failed: {exc}") from exc
        except OSError as exc:
            raise EchoError(f"Echo to {address} failed: {exc}") from exc

    @override
    def __repr__(self) -> str:
        return f"IcmpEchoSession({self._socket!r})"


class IcmpEchoTransport:
    """Open icmplib sockets for probing.

    Privileged mode uses raw sockets (root or CAP_NET_RAW); unprivileged
    mode uses datagram ICMP sockets, which on Linux require the process
    group to be allowed by net.ipv4.ping_group_range.
    """

    def __init__(self, *, privileged: bool = True, logger_obj: logging.Logger | None = None) -> None:
        self._privileged: bool = privileged
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    @property
    def privileged(self) -> bool:
        return self._privileged

    def _open_socket(self) -> AsyncSocket:
        try:
            return AsyncSocket(ICMPv4Socket(privileged=self._privileged))
        except (ICMPLibError, OSError) as exc:
            mode = "raw" if self._privileged else "unprivileged"
            msg = (
                f"Cannot open {mode} ICMP socket: {exc}. "
                "Run as root, grant CAP_NET_RAW, or switch probing.privileged."
            )
            raise ProbeTransportError(msg) from exc

    @asynccontextmanager
    async def session(self) -> AsyncIterator[EchoSession]:
        """Open a socket for the rounds of one probe call.

        Raises:
            ProbeTransportError: If the socket cannot be created
        """
        sock = self._open_socket()
        try:
            yield IcmpEchoSession(sock)
        finally:
            sock.close()

    def verify(self) -> None:
        """Open and immediately close a socket to check probing is permitted.

        Raises:
            ProbeTransportError: If the socket cannot be created
        """
        sock = self._open_socket()
        sock.close()
        self._logger.debug("ICMP socket check passed (privileged=%s)", self._privileged)
