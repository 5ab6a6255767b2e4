"""
Error taxonomy shared by the crawler, the store and the reconciliation tool.
"""

from __future__ import annotations

from typing import Optional


class CatalogCrawlError(Exception):
    """Base class for all catalogcrawl errors."""


class ConfigurationError(CatalogCrawlError):
    """Required configuration is missing or invalid. Fatal before crawling starts."""


class FetchError(CatalogCrawlError):
    """A remote page could not be retrieved or understood."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        # Set by RetryPolicy when the error is propagated.
        self.attempts = 1


class TransientNetworkError(FetchError):
    """Connection reset, timeout or gateway failure. Retried with the short backoff."""


class RateLimitedError(FetchError):
    """HTTP 429. Retried with the longer throttle backoff."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, url=url, status=status)
        self.retry_after = retry_after


class PermanentFetchError(FetchError):
    """4xx other than 429, unknown host or malformed response. Never retried."""


class StoreError(CatalogCrawlError):
    """The backing store rejected or could not perform an operation."""


class StoreBusyError(StoreError):
    """The store is locked by another writer."""
