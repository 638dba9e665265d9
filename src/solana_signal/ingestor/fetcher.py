"""Bounded HTTP fetcher with a hard wall-clock budget and byte ceiling.

Every upstream call in the service goes through :class:`BoundedFetcher`.
A call never blocks past its timeout and never buffers more than
``max_bytes`` of a response body, no matter how the upstream behaves.
Failures are returned as values (:class:`FetchOutcome`), never raised;
retry and failover belong to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_BYTES = 2 * 1024 * 1024  # 2 MiB
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "solana-signal/0.1"}


class FetchError(Exception):
    """Base exception for bounded fetch failures."""


class NetworkError(FetchError):
    """Raised when the connection fails before a complete response arrives."""


class FetchTimeoutError(NetworkError):
    """Raised when no complete response arrives within the budget."""


class HttpStatusError(FetchError):
    """Raised when the upstream answers with a non-2xx status."""

    def __init__(self, status: int, message: str | None = None) -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = status


class ParseError(FetchError):
    """Raised when a response body cannot be decoded as JSON."""


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one bounded fetch.

    Attributes:
        url: Requested URL.
        ok: True when a 2xx response was decoded into ``payload``.
        payload: Decoded JSON body (only when ``ok``).
        error: The failure (only when not ``ok``).
        byte_count: Bytes of body observed before the call ended.
        status: HTTP status, when a response line was received.
        truncated: True when the body hit the byte cap.
        elapsed_seconds: Wall-clock duration of the call.
    """

    url: str
    ok: bool
    payload: Any = None
    error: FetchError | None = None
    byte_count: int = 0
    status: int | None = None
    truncated: bool = False
    elapsed_seconds: float = 0.0

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


@dataclass
class _ReadProgress:
    status: int | None = None
    byte_count: int = 0
    truncated: bool = False


class BoundedFetcher:
    """Performs single GET requests under a timeout and a byte cap.

    Example:
        ```python
        async with aiohttp.ClientSession() as session:
            fetcher = BoundedFetcher(session, timeout_seconds=5, max_bytes=1_000_000)
            outcome = await fetcher.fetch("https://api.raydium.io/v2/main/pairs")
            if outcome.ok:
                print(outcome.payload)
        ```
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the fetcher.

        Args:
            session: Shared aiohttp session (owned by the caller).
            timeout_seconds: Default wall-clock budget per call.
            max_bytes: Default byte ceiling per response body.
            chunk_size: Maximum bytes requested per read.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        self._session = session
        self._timeout = timeout_seconds
        self._max_bytes = max_bytes
        self._chunk_size = chunk_size

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    async def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        max_bytes: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchOutcome:
        """Fetch ``url`` and decode its JSON body within the configured bounds."""
        budget = float(timeout) if timeout is not None else self._timeout
        cap = int(max_bytes) if max_bytes is not None else self._max_bytes
        request_headers = {**DEFAULT_HEADERS, **(headers or {})}
        progress = _ReadProgress()
        started = time.monotonic()

        def failed(error: FetchError) -> FetchOutcome:
            logger.debug("Fetch failed for %s: %s", url, error)
            return FetchOutcome(
                url=url,
                ok=False,
                error=error,
                byte_count=progress.byte_count,
                status=progress.status,
                truncated=progress.truncated,
                elapsed_seconds=time.monotonic() - started,
            )

        try:
            body = await asyncio.wait_for(
                self._read_body(url, request_headers, budget, cap, progress),
                timeout=budget,
            )
        except TimeoutError:
            return failed(FetchTimeoutError(f"No complete response within {budget:.2f}s"))
        except (aiohttp.ClientError, OSError) as e:
            return failed(NetworkError(str(e) or type(e).__name__))

        status = progress.status or 0
        if not 200 <= status < 300:
            return failed(HttpStatusError(status))

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            if progress.truncated:
                return failed(ParseError(f"Body truncated at {cap} bytes is not valid JSON: {e}"))
            return failed(ParseError(f"Malformed JSON body: {e}"))

        elapsed = time.monotonic() - started
        logger.debug(
            "Fetched %s: status=%d bytes=%d truncated=%s in %.3fs",
            url,
            status,
            progress.byte_count,
            progress.truncated,
            elapsed,
        )
        return FetchOutcome(
            url=url,
            ok=True,
            payload=payload,
            byte_count=progress.byte_count,
            status=status,
            truncated=progress.truncated,
            elapsed_seconds=elapsed,
        )

    async def _read_body(
        self,
        url: str,
        headers: Mapping[str, str],
        budget: float,
        cap: int,
        progress: _ReadProgress,
    ) -> bytes:
        client_timeout = aiohttp.ClientTimeout(total=budget)
        async with self._session.get(url, headers=headers, timeout=client_timeout) as resp:
            progress.status = resp.status
            if not 200 <= resp.status < 300:
                return b""

            buf = bytearray()
            while len(buf) < cap:
                chunk = await resp.content.read(min(self._chunk_size, cap - len(buf)))
                if not chunk:
                    break
                buf.extend(chunk)
                progress.byte_count = len(buf)

            if len(buf) >= cap and not resp.content.at_eof():
                # Abort the transfer; the connection is not reused.
                progress.truncated = True
                resp.close()
            return bytes(buf)
