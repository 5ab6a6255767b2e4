"""
Dependency container wiring configuration, the catalog store and the HTTP client.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

from catalogcrawl.config import Config
from catalogcrawl.controller import CrawlController
from catalogcrawl.crawler.detail import DetailFetcher
from catalogcrawl.crawler.http_client import HttpClient
from catalogcrawl.crawler.listing import ListingFetcher
from catalogcrawl.crawler.rate_limiter import RequestPacer
from catalogcrawl.crawler.retry import RetryPolicy
from catalogcrawl.dedup.resolver import DuplicateResolver
from catalogcrawl.dedup.scanner import DuplicateScanner
from catalogcrawl.extractor.fields import SelectorFieldExtractor
from catalogcrawl.ingest import Ingester
from catalogcrawl.protocols import FetchClient, GroupSelector
from catalogcrawl.storage.catalog_store import CatalogStore
from catalogcrawl.storage.existence import ExistenceIndex

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """Lazy-loaded instance with lifecycle management."""

    def __init__(self, factory: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None

    async def get(self) -> T:
        """Get or create the instance, awaiting its ``initialize`` once."""
        if self._instance is None:
            instance = self._factory(*self._args, **self._kwargs)
            initialize = getattr(instance, "initialize", None)
            if callable(initialize):
                await initialize()
            self._instance = instance
        return self._instance

    @property
    def created(self) -> bool:
        return self._instance is not None

    async def cleanup(self) -> None:
        close = getattr(self._instance, "close", None)
        if callable(close):
            await close()
        self._instance = None


class Container:
    """
    Owns the long-lived resources for one command invocation.

    The store is opened eagerly by :meth:`initialize` so that an unreachable
    store aborts before any crawling begins. The HTTP client is created on
    first use. ``client`` and ``sleep`` may be injected for tests.
    """

    def __init__(
        self,
        config: Config,
        *,
        client: Optional[FetchClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.sleep = sleep
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._injected_client = client
        self._instances: Dict[str, LazyInstance[Any]] = {
            "store": LazyInstance(CatalogStore, config.store),
            "http_client": LazyInstance(HttpClient, config.crawler),
        }

    async def initialize(self) -> None:
        await self.get_store()
        self.logger.info("Container initialized", db_path=str(self.config.store.db_path))

    async def get_store(self) -> CatalogStore:
        return await self._instances["store"].get()  # type: ignore[no-any-return]

    async def get_http_client(self) -> FetchClient:
        if self._injected_client is not None:
            return self._injected_client
        return await self._instances["http_client"].get()  # type: ignore[no-any-return]

    async def shutdown(self) -> None:
        for name, instance in self._instances.items():
            if not instance.created:
                continue
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error(f"Error cleaning up {name}", error=str(e))

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["Container"]:
        """Context manager for proper lifecycle management."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_config(self.config.retry, sleep=self.sleep)

    async def crawl_controller(self, profile_name: str) -> CrawlController:
        """Build a controller for one configured profile; unknown profiles raise ConfigurationError."""
        profile = self.config.profile(profile_name)
        collection = self.config.collection_for(profile_name)
        store = await self.get_store()
        client = await self.get_http_client()
        retry = self.retry_policy()
        pacer = RequestPacer(self.config.crawler.request_delay, sleep=self.sleep)

        return CrawlController(
            listing=ListingFetcher(client, profile, retry, pacer),
            index=ExistenceIndex(store),
            details=DetailFetcher(
                client,
                SelectorFieldExtractor.from_profile(profile),
                retry,
                pacer,
                collection=collection,
            ),
            ingester=Ingester(store, retry),
            settings=self.config.crawler,
            collection=collection,
        )

    async def duplicate_scanner(self) -> DuplicateScanner:
        return DuplicateScanner(await self.get_store(), self.config.store.scan_page_size)

    async def duplicate_resolver(self, selector: GroupSelector, *, dry_run: bool = False) -> DuplicateResolver:
        return DuplicateResolver(await self.get_store(), selector, dry_run=dry_run)
