"""
Bounded retry with per-class backoff, shared by page fetches, detail fetches
and store writes.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from catalogcrawl.config.config import RetryConfig
from catalogcrawl.errors import RateLimitedError, StoreBusyError, TransientNetworkError
from catalogcrawl.observability.metrics import METRICS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryClass(Enum):
    """Retryable failure classes, each with its own backoff."""

    RESET = "reset"
    THROTTLE = "throttle"


Classifier = Callable[[BaseException], Optional[RetryClass]]
Sleep = Callable[[float], Awaitable[None]]


def classify_fetch_error(exc: BaseException) -> Optional[RetryClass]:
    if isinstance(exc, RateLimitedError):
        return RetryClass.THROTTLE
    if isinstance(exc, TransientNetworkError):
        return RetryClass.RESET
    return None


def classify_store_error(exc: BaseException) -> Optional[RetryClass]:
    """Only lock contention is worth another attempt; other store failures surface immediately."""
    if isinstance(exc, StoreBusyError):
        return RetryClass.RESET
    return None


class RetryPolicy:
    """
    Runs an operation, retrying failures its classifier marks retryable.

    An operation is attempted at most ``retries + 1`` times. Once the budget is
    spent, or for a failure the classifier does not recognise, the last
    exception propagates unchanged with ``attempts`` set on it.
    """

    def __init__(
        self,
        retries: int = 3,
        reset_backoff: float = 4.0,
        throttle_backoff: float = 10.0,
        max_backoff: float = 60.0,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.retries = retries
        self.reset_backoff = reset_backoff
        self.throttle_backoff = throttle_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RetryConfig, *, sleep: Sleep = asyncio.sleep) -> "RetryPolicy":
        return cls(
            retries=config.retries,
            reset_backoff=config.reset_backoff,
            throttle_backoff=config.throttle_backoff,
            max_backoff=config.max_backoff,
            sleep=sleep,
        )

    def backoff_for(self, retry_class: RetryClass, exc: BaseException) -> float:
        """Backoff for one retry. Retry-After may lengthen the throttle wait, up to ``max_backoff``."""
        if retry_class is RetryClass.THROTTLE:
            retry_after = getattr(exc, "retry_after", None)
            if retry_after is not None:
                return max(self.throttle_backoff, min(self.max_backoff, float(retry_after)))
            return self.throttle_backoff
        return self.reset_backoff

    async def run(self, operation: Callable[[], Awaitable[T]], classify: Classifier, *, context: str = "") -> T:
        remaining = self.retries
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                retry_class = classify(exc)
                if retry_class is None or remaining <= 0:
                    if retry_class is not None:
                        logger.warning(
                            "Retries exhausted",
                            context=context,
                            attempts=attempt,
                            error_type=type(exc).__name__,
                            error=str(exc),
                        )
                    exc.attempts = attempt  # type: ignore[attr-defined]
                    raise

                remaining -= 1
                delay = self.backoff_for(retry_class, exc)
                METRICS["retries"].labels(retry_class=retry_class.value).inc()
                if retry_class is RetryClass.THROTTLE:
                    logger.warning(
                        "Rate limited, backing off",
                        context=context,
                        attempt=attempt,
                        delay=delay,
                        retries_left=remaining,
                    )
                else:
                    logger.info(
                        "Retrying transient failure",
                        context=context,
                        attempt=attempt,
                        delay=delay,
                        retries_left=remaining,
                        error=str(exc),
                    )
                await self._sleep(delay)
