"""HTTP client for downloading DNS server lists.

This module provides an aiohttp-based client with timeout support and
exponential backoff retry logic with jitter, used by the update command to
fetch server lists from a remote URL.
"""

import asyncio
import logging
import random
from collections.abc import Mapping
from typing import Self

import aiohttp

from dnstest.types.models import Response


class AIOHTTPClient:
    """Async HTTP client with retry logic.

    Example:
        >>> async with AIOHTTPClient() as client:  # doctest: +SKIP
        ...     response = await client.get_with_retry(
        ...         url="https://example.com/dnslist.json"
        ...     )
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        max_backoff_seconds: float = 30.0,
        default_timeout_seconds: float = 15.0,
        jitter_percent: float = 20.0,
    ) -> None:
        """Initialize HTTP client with configurable retry settings.

        Args:
            max_retries: Maximum number of retry attempts (default: 3)
            max_backoff_seconds: Maximum backoff interval in seconds (default: 30.0)
            default_timeout_seconds: Default timeout for requests in seconds (default: 15.0)
            jitter_percent: Jitter percentage for backoff randomization (default: 20.0)
        """
        self._max_retries: int = max_retries
        self._max_backoff_seconds: float = max_backoff_seconds
        self._default_timeout_seconds: float = default_timeout_seconds
        self._jitter_percent: float = jitter_percent

        # aiohttp session (created in __aenter__)
        self._session: aiohttp.ClientSession | None = None

        self._logger: logging.Logger = logging.getLogger(__name__)

    async def __aenter__(self) -> Self:
        """Enter async context manager and create aiohttp session."""
        timeout = aiohttp.ClientTimeout(total=self._default_timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager and close the session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def get(self, url: str, *, timeout: float) -> Response:
        """Send HTTP GET request with timeout.

        Args:
            url: Target URL
            timeout: Request timeout in seconds (keyword-only)

        Returns:
            HTTP response with status, body text, and headers

        Raises:
            TimeoutError: If request exceeds timeout
            ValueError: If URL is malformed
            aiohttp.ClientError: For connection issues
        """
        if self._session is None:
            msg = "HTTP client session not initialized. Use 'async with' context manager."
            raise RuntimeError(msg)

        self._logger.debug("Initiating GET request to %s", url)

        try:
            async with asyncio.timeout(timeout):
                async with self._session.get(url) as response:
                    body = await response.text()
                    return Response(
                        status=response.status,
                        body=body,
                        headers=dict(response.headers),
                    )
        except TimeoutError:
            self._logger.warning("Request to %s timed out after %.1fs", url, timeout)
            raise
        except aiohttp.InvalidURL as exc:
            self._logger.error("Invalid URL: %s", url)
            raise ValueError(f"Malformed URL: {url}") from exc
        except aiohttp.ClientError as exc:
            self._logger.warning("Client error for %s: %s", url, exc)
            raise

    async def get_with_retry(self, url: str) -> Response:
        """Send HTTP GET with exponential backoff retry.

        Retry conditions:
        - Network timeouts (TimeoutError)
        - HTTP 5xx server errors and 429 (honoring Retry-After)
        - Connection and other aiohttp client errors

        Non-retry conditions:
        - HTTP 4xx client errors (except 429)

        Args:
            url: Target URL

        Returns:
            Successful (2xx/3xx) HTTP response

        Raises:
            RuntimeError: On a non-retryable status or exhausted retries on 5xx
            TimeoutError: If the last attempt timed out
            aiohttp.ClientError: If the last attempt failed to connect
        """
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            try:
                response = await self.get(url, timeout=self._default_timeout_seconds)
            except (TimeoutError, aiohttp.ClientError) as exc:
                if attempt >= self._max_retries:
                    raise
                delay = self._calculate_backoff_delay(attempt)
                self._logger.warning(
                    "Request to %s failed: %s, retrying in %.1fs (attempt %d/%d)",
                    url,
                    str(exc) or type(exc).__name__,
                    delay,
                    attempt + 1,
                    attempts,
                )
                await asyncio.sleep(delay)
                continue

            if 200 <= response.status < 400:
                self._logger.info(
                    "Request to %s succeeded (status=%d, attempt=%d)",
                    url,
                    response.status,
                    attempt + 1,
                )
                return response

            if not self._is_retryable_status(response.status):
                msg = f"Client error {response.status} from {url} (non-retryable)"
                raise RuntimeError(msg)

            if attempt >= self._max_retries:
                msg = f"Server error {response.status} from {url} after {attempt + 1} attempts"
                raise RuntimeError(msg)

            delay = self._calculate_backoff_delay(attempt)
            if response.status == 429:
                retry_after = self._parse_retry_after(response.headers)
                if retry_after is not None:
                    delay = min(retry_after, self._max_backoff_seconds)
            self._logger.warning(
                "Status %d from %s, retrying in %.1fs (attempt %d/%d)",
                response.status,
                url,
                delay,
                attempt + 1,
                attempts,
            )
            await asyncio.sleep(delay)

        msg = f"All retry attempts exhausted for {url}"
        raise RuntimeError(msg)

    def _calculate_backoff_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter.

        Uses delay = min(2^attempt, max_backoff_seconds) with ±jitter_percent
        of random jitter, capped at max_backoff_seconds.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds with jitter applied
        """
        base_delay: float = min(pow(2.0, attempt), self._max_backoff_seconds)
        jitter_factor: float = 1.0 + random.uniform(
            -self._jitter_percent / 100.0,
            self._jitter_percent / 100.0,
        )
        return min(base_delay * jitter_factor, self._max_backoff_seconds)

    def _parse_retry_after(self, headers: Mapping[str, str]) -> float | None:
        """Parse a Retry-After header given in seconds.

        Returns:
            Delay in seconds, or None if header not present or not numeric
        """
        retry_after = headers.get("Retry-After") or headers.get("retry-after")
        if not retry_after:
            return None

        try:
            return float(retry_after)
        except ValueError:
            self._logger.warning("Retry-After header has unsupported format: %s", retry_after)
            return None

    def _is_retryable_status(self, status: int) -> bool:
        """Check if HTTP status code is retryable (429 or 5xx)."""
        return status == 429 or status >= 500
