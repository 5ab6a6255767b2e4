"""
Pagination state machine for one crawl session.
"""

from __future__ import annotations

from typing import Callable, List, Optional

import structlog

from catalogcrawl.config.config import CrawlerConfig
from catalogcrawl.crawler.detail import DetailFetcher
from catalogcrawl.crawler.listing import ListingFetcher
from catalogcrawl.crawler.retry import classify_fetch_error
from catalogcrawl.errors import FetchError
from catalogcrawl.ingest import Ingester
from catalogcrawl.models import Candidate, CrawlSession, CrawlState, IngestOutcome, ListingPage, StopReason
from catalogcrawl.storage.existence import ExistenceIndex

logger = structlog.get_logger(__name__)

Subscriber = Callable[[CrawlSession], None]


class CrawlController:
    """
    Walks listing pages in order, ingesting items not yet in the store.

    Pages and items are processed strictly one at a time. The loop stops when
    the page counter passes ``max_pages``, when auto-stop sees
    ``auto_stop_pages`` consecutive pages without an ``INSERTED`` outcome, when
    a listing page stays unreachable after its retries, or when
    :meth:`request_stop` is called. Cancellation is honoured between items.
    """

    def __init__(
        self,
        listing: ListingFetcher,
        index: ExistenceIndex,
        details: DetailFetcher,
        ingester: Ingester,
        settings: CrawlerConfig,
        *,
        collection: str = "",
    ):
        self.listing = listing
        self.index = index
        self.details = details
        self.ingester = ingester
        self.settings = settings
        self.session = CrawlSession(collection=collection)
        self._subscribers: List[Subscriber] = []
        self._stop_requested = False

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback that receives a CrawlSession snapshot after every item and page."""
        self._subscribers.append(callback)

    def request_stop(self) -> None:
        if not self._stop_requested:
            logger.info("Stop requested, finishing current step", collection=self.session.collection)
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def _publish(self) -> None:
        session = self.session
        session.http_requests = self.listing.pacer.requests
        session.store_reads = self.index.lookups
        session.store_writes = self.ingester.writes
        snapshot = session.snapshot()
        for callback in self._subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning("Progress subscriber failed", error=str(e))

    def _enter(self, state: CrawlState) -> None:
        self.session.state = state
        self._publish()

    def _stop(self, reason: StopReason) -> None:
        self.session.stop_reason = reason
        self._enter(CrawlState.STOPPED)

    def _should_stop(self, page: int) -> Optional[StopReason]:
        if self._stop_requested:
            return StopReason.CANCELLED
        if page > self.settings.max_pages:
            return StopReason.MAX_PAGES
        if self.settings.auto_stop and self.session.consecutive_empty_pages >= self.settings.auto_stop_pages:
            return StopReason.AUTO_STOP
        return None

    async def run(self, start_page: int = 1) -> CrawlSession:
        """Run the session to completion and return the final counters."""
        logger.info(
            "Crawl started",
            collection=self.session.collection,
            max_pages=self.settings.max_pages,
            auto_stop=self.settings.auto_stop,
            auto_stop_pages=self.settings.auto_stop_pages,
        )
        page = start_page
        while True:
            reason = self._should_stop(page)
            if reason is not None:
                if reason is StopReason.AUTO_STOP:
                    logger.info(
                        "Auto-stop: no new items",
                        consecutive_empty_pages=self.session.consecutive_empty_pages,
                        next_page=page,
                    )
                elif reason is StopReason.CANCELLED:
                    logger.info("Crawl cancelled", next_page=page)
                self._stop(reason)
                break

            listing = await self._fetch_listing(page)
            if listing is None:
                self._stop(StopReason.LISTING_FAILED)
                break

            inserted = await self._process_page(listing)
            if inserted is None:
                # Cancelled mid-page; the loop head records the stop.
                continue

            if inserted == 0:
                self.session.consecutive_empty_pages += 1
            else:
                self.session.consecutive_empty_pages = 0
            logger.info(
                "Page complete",
                page=page,
                inserted=inserted,
                consecutive_empty_pages=self.session.consecutive_empty_pages,
            )
            self._publish()
            page += 1

        logger.info("Crawl finished", **self.session.as_dict())
        return self.session

    async def _fetch_listing(self, page: int) -> Optional[ListingPage]:
        """Return the page's candidates, an empty page for a permanent failure, or None to stop."""
        self._enter(CrawlState.FETCHING_LISTING)
        try:
            listing = await self.listing.fetch(page)
        except FetchError as e:
            self.session.fetch_failures += 1
            self.session.pages_visited += 1
            if classify_fetch_error(e) is not None:
                logger.error(
                    "Listing page unreachable after retries, stopping session",
                    page=page,
                    url=e.url,
                    attempts=e.attempts,
                    error=str(e),
                )
                return None
            logger.warning("Listing page skipped", page=page, url=e.url, status=e.status, error=str(e))
            return ListingPage(page=page, url=e.url or "")
        self.session.pages_visited += 1
        self.session.candidates_seen += len(listing.candidates)
        return listing

    async def _filter(self, candidates: tuple[Candidate, ...]) -> Optional[List[Candidate]]:
        self._enter(CrawlState.FILTERING_CANDIDATES)
        unknown: List[Candidate] = []
        known = 0
        for candidate in candidates:
            if self._stop_requested:
                return None
            if await self.index.is_known(candidate.url):
                known += 1
            else:
                unknown.append(candidate)
        self.session.items_known += known
        logger.info("Candidates filtered", already_known=known, new=len(unknown))
        return unknown

    async def _process_page(self, listing: ListingPage) -> Optional[int]:
        """Fetch and ingest unknown candidates. Returns the number inserted, or None if cancelled."""
        unknown = await self._filter(listing.candidates)
        if unknown is None:
            return None

        inserted = 0
        for candidate in unknown:
            if self._stop_requested:
                return None

            self._enter(CrawlState.FETCHING_DETAILS)
            try:
                item = await self.details.fetch(candidate.url, candidate.label)
            except FetchError as e:
                self.session.fetch_failures += 1
                logger.warning(
                    "Item skipped, fetch failed",
                    url=candidate.url,
                    status=e.status,
                    attempts=e.attempts,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self._publish()
                continue
            self.session.items_fetched += 1

            self._enter(CrawlState.INGESTING)
            outcome = await self.ingester.ingest(item)
            if outcome is IngestOutcome.INSERTED:
                self.session.items_inserted += 1
                inserted += 1
            elif outcome is IngestOutcome.ALREADY_EXISTS:
                self.session.items_known += 1
            else:
                self.session.store_errors += 1
            self._publish()
        return inserted
