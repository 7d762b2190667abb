"""ICMP echo prober measuring reachability and latency of one endpoint.

This module implements the EchoProber class, which runs a fixed number of
sequential echo rounds against a single endpoint and folds them into one
ProbeOutcome. Each round is bounded by the per-attempt timeout; a round
that times out or fails in transport is logged and counted as lost.
"""

from __future__ import annotations

import asyncio
import ipaddress
import itertools
import logging
import random
import time
from typing import Final

from dnstest.core.errors import EchoError
from dnstest.types import (
    FAILURE_INVALID_ADDRESS,
    FAILURE_TIMEOUT,
    FAILURE_UNSUPPORTED_FAMILY,
    EchoSession,
    EchoTransport,
    Endpoint,
    ProbeOutcome,
)
from dnstest.utils.logging import get_logger, log_with_context

__all__ = [
    "DEFAULT_ATTEMPTS",
    "DEFAULT_PAYLOAD_SIZE",
    "DEFAULT_PER_ATTEMPT_TIMEOUT",
    "EchoProber",
    "next_identifier",
]

DEFAULT_PAYLOAD_SIZE: Final[int] = 32
DEFAULT_PER_ATTEMPT_TIMEOUT: Final[float] = 5.0
DEFAULT_ATTEMPTS: Final[int] = 3

# Echo identifiers are 16-bit; start at a random offset so separate processes
# probing the same address are unlikely to collide
_identifiers = itertools.count(random.randrange(0x10000))


def next_identifier() -> int:
    """Return a fresh 16-bit echo identifier, unique among in-flight probes."""
    return next(_identifiers) & 0xFFFF


class EchoProber:
    """Probe endpoints with sequential ICMP echo rounds.

    Rounds within one probe call run one after another over a single
    session, so replies never need demultiplexing across rounds and loss
    accounting stays a simple count.
    """

    def __init__(
        self,
        transport: EchoTransport,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        per_attempt_timeout: float = DEFAULT_PER_ATTEMPT_TIMEOUT,
        payload_size: int = DEFAULT_PAYLOAD_SIZE,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        _validate_attempts(attempts)
        _validate_timeout(per_attempt_timeout)
        if payload_size < 0:
            msg = "payload_size must be non-negative"
            raise ValueError(msg)

        self._transport: EchoTransport = transport
        self._attempts: int = attempts
        self._per_attempt_timeout: float = per_attempt_timeout
        self._payload: bytes = bytes(payload_size)
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def per_attempt_timeout(self) -> float:
        return self._per_attempt_timeout

    async def probe(
        self,
        endpoint: Endpoint,
        *,
        attempts: int | None = None,
        per_attempt_timeout: float | None = None,
    ) -> ProbeOutcome:
        """Probe a single endpoint.

        Args:
            endpoint: Target to probe
            attempts: Number of echo rounds (default: the prober's setting)
            per_attempt_timeout: Seconds to wait for each reply
                (default: the prober's setting)

        Returns:
            Outcome with the mean latency of the successful rounds, or a
            failure with reason "invalid address", "address family
            unsupported" or "timeout"

        Raises:
            ValueError: If attempts < 1 or per_attempt_timeout <= 0
            ProbeTransportError: If no echo session could be opened
        """
        rounds = self._attempts if attempts is None else attempts
        timeout = self._per_attempt_timeout if per_attempt_timeout is None else per_attempt_timeout
        _validate_attempts(rounds)
        _validate_timeout(timeout)

        ip = endpoint.ip
        if ip is None:
            return ProbeOutcome.failure(endpoint, FAILURE_INVALID_ADDRESS)

        # IPv6 endpoints are listed but not probed yet
        if isinstance(ip, ipaddress.IPv6Address):
            return ProbeOutcome.failure(endpoint, FAILURE_UNSUPPORTED_FAMILY)

        address = str(ip)
        identifier = next_identifier()
        latencies: list[float] = []

        async with self._transport.session() as session:
            for sequence in range(rounds):
                latency = await self._run_round(
                    session,
                    endpoint,
                    address,
                    identifier=identifier,
                    sequence=sequence,
                    timeout=timeout,
                )
                if latency is not None:
                    latencies.append(latency)

        packet_loss = 1.0 - len(latencies) / rounds

        if not latencies:
            log_with_context(
                self._logger,
                logging.DEBUG,
                "Endpoint did not answer any echo round",
                extra={"endpoint": address, "attempts": rounds},
            )
            return ProbeOutcome.failure(endpoint, FAILURE_TIMEOUT, packet_loss=1.0)

        mean_latency = sum(latencies) / len(latencies)
        log_with_context(
            self._logger,
            logging.DEBUG,
            "Endpoint probed",
            extra={
                "endpoint": address,
                "latency_ms": round(mean_latency, 3),
                "packet_loss": packet_loss,
            },
        )
        return ProbeOutcome.success(endpoint, mean_latency, packet_loss)

    async def _run_round(
        self,
        session: EchoSession,
        endpoint: Endpoint,
        address: str,
        *,
        identifier: int,
        sequence: int,
        timeout: float,
    ) -> float | None:
        """Run one echo round and return its latency in ms, or None if lost."""
        start = time.perf_counter()
        try:
            async with asyncio.timeout(timeout):
                await session.echo(
                    address,
                    identifier=identifier,
                    sequence=sequence,
                    payload=self._payload,
                    timeout=timeout,
                )
        except TimeoutError:
            return None
        except EchoError as exc:
            log_with_context(
                self._logger,
                logging.DEBUG,
                "Echo round failed",
                extra={
                    "endpoint": address,
                    "endpoint_name": endpoint.name,
                    "sequence": sequence,
                    "error": str(exc),
                },
            )
            return None
        return (time.perf_counter() - start) * 1000.0


def _validate_attempts(attempts: int) -> None:
    if attempts < 1:
        msg = "attempts must be at least 1"
        raise ValueError(msg)


def _validate_timeout(timeout: float) -> None:
    if timeout <= 0:
        msg = "per_attempt_timeout must be greater than zero"
        raise ValueError(msg)
