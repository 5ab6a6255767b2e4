"""
Crawler module: paced, retried fetching of listing and detail pages.

- RetryPolicy: bounded retries with distinct reset and throttle backoff
- RequestPacer: one inter-request delay applied to every outbound call
- HttpClient: aiohttp client that classifies failures for the retry policy
- ListingFetcher / DetailFetcher: page retrieval and candidate discovery
"""

from .detail import DetailFetcher
from .http_client import HttpClient
from .listing import ListingFetcher
from .rate_limiter import RequestPacer
from .retry import RetryClass, RetryPolicy, classify_fetch_error, classify_store_error

__all__ = [
    "DetailFetcher",
    "HttpClient",
    "ListingFetcher",
    "RequestPacer",
    "RetryClass",
    "RetryPolicy",
    "classify_fetch_error",
    "classify_store_error",
]
