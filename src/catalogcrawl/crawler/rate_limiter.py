"""
Inter-request pacing for a single crawl session.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from catalogcrawl.observability.metrics import METRICS
from catalogcrawl.protocols import FetchClient, FetchResponse

logger = structlog.get_logger(__name__)


class RequestPacer:
    """
    Enforces a minimum interval between outbound requests.

    Every listing fetch, detail fetch and retry attempt goes through
    :meth:`fetch`, so the delay applies uniformly to all of them.
    """

    def __init__(
        self,
        delay: float,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.delay = max(0.0, delay)
        self.requests = 0
        self._sleep = sleep
        self._clock = clock
        self._last_request: Optional[float] = None

    async def wait(self) -> None:
        if self._last_request is not None and self.delay > 0:
            remaining = self.delay - (self._clock() - self._last_request)
            if remaining > 0:
                await self._sleep(remaining)
        self._last_request = self._clock()
        self.requests += 1

    async def fetch(self, client: FetchClient, url: str, *, kind: str = "detail") -> FetchResponse:
        """Wait for the pacing interval, then issue one request."""
        await self.wait()
        METRICS["http_requests"].labels(kind=kind).inc()
        logger.debug("Fetching", url=url, kind=kind, request=self.requests)
        return await client.fetch(url)
