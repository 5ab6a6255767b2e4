"""
aiohttp fetch client that maps every failure onto the fetch error taxonomy.
"""

from __future__ import annotations

import asyncio
import socket
import time
from typing import Optional

import aiohttp
import structlog

from catalogcrawl.config.config import CrawlerConfig
from catalogcrawl.errors import FetchError, PermanentFetchError, RateLimitedError, TransientNetworkError
from catalogcrawl.observability.metrics import METRICS
from catalogcrawl.protocols import FetchResponse

logger = structlog.get_logger(__name__)

TRANSIENT_STATUSES = frozenset({502, 503, 504})


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not worth honouring; the throttle backoff applies.
        return None


class HttpClient:
    """
    Single-session HTTP client.

    ``fetch`` returns a :class:`FetchResponse` for 2xx/3xx responses and raises
    ``TransientNetworkError``, ``RateLimitedError`` or ``PermanentFetchError``
    otherwise. Retrying is left to the caller's RetryPolicy.
    """

    def __init__(self, config: CrawlerConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        """Initialize the HTTP client session."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self.session = aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": self.config.user_agent})
            logger.info("HTTP client session initialized", timeout=self.config.timeout)

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("HTTP client closed")

    async def __aenter__(self) -> "HttpClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _fail(self, exc: FetchError) -> FetchError:
        METRICS["fetch_failures"].labels(failure=type(exc).__name__).inc()
        logger.debug("Fetch failed", url=exc.url, status=exc.status, error_type=type(exc).__name__, error=str(exc))
        return exc

    async def fetch(self, url: str) -> FetchResponse:
        if self.session is None:
            raise RuntimeError("HTTP client not initialized. Call initialize() first.")

        start_time = time.time()
        try:
            async with self.session.get(url) as response:
                body = await response.read()
                status = response.status
                final_url = str(response.url)
                retry_after = response.headers.get("Retry-After")
        except aiohttp.InvalidURL as e:
            raise self._fail(PermanentFetchError(f"Invalid URL: {e}", url=url)) from e
        except aiohttp.ClientConnectorError as e:
            if isinstance(e.os_error, socket.gaierror):
                raise self._fail(PermanentFetchError(f"Unknown host: {e}", url=url)) from e
            raise self._fail(TransientNetworkError(f"Connection failed: {e}", url=url)) from e
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, ConnectionResetError) as e:
            raise self._fail(TransientNetworkError(f"Connection reset: {e!r}", url=url)) from e
        except asyncio.TimeoutError as e:
            raise self._fail(TransientNetworkError(f"Request timed out after {self.config.timeout}s", url=url)) from e
        except aiohttp.ClientError as e:
            raise self._fail(PermanentFetchError(f"Request failed: {e!r}", url=url)) from e

        if status == 429:
            raise self._fail(
                RateLimitedError("HTTP 429 Too Many Requests", url=url, retry_after=_parse_retry_after(retry_after))
            )
        if status in TRANSIENT_STATUSES:
            raise self._fail(TransientNetworkError(f"HTTP {status}", url=url, status=status))
        if status >= 400:
            raise self._fail(PermanentFetchError(f"HTTP {status}", url=url, status=status))

        elapsed = time.time() - start_time
        logger.debug("Fetched", url=url, status=status, bytes=len(body), elapsed=round(elapsed, 3))
        return FetchResponse(status=status, body=body, url=url, final_url=final_url, elapsed=elapsed)
