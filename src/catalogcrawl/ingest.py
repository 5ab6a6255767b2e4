"""
Conditional writes of new catalog records.
"""

from __future__ import annotations

import structlog

from catalogcrawl.crawler.retry import RetryPolicy, classify_store_error
from catalogcrawl.errors import StoreError
from catalogcrawl.models import CatalogItem, IngestOutcome
from catalogcrawl.observability.metrics import METRICS
from catalogcrawl.protocols import CatalogStoreProtocol

logger = structlog.get_logger(__name__)


class Ingester:
    """
    Writes one record with create-if-absent semantics.

    ``ALREADY_EXISTS`` is a normal outcome and is never retried. Lock
    contention is retried through the policy; any other store failure is
    returned as ``STORE_ERROR`` so the crawl can move on to the next item.
    """

    def __init__(self, store: CatalogStoreProtocol, retry: RetryPolicy):
        self.store = store
        self.retry = retry
        self.writes = 0

    async def _put(self, item: CatalogItem) -> IngestOutcome:
        self.writes += 1
        return await self.store.put_if_absent(item)

    async def ingest(self, item: CatalogItem) -> IngestOutcome:
        try:
            outcome = await self.retry.run(lambda: self._put(item), classify_store_error, context=item.url)
        except StoreError as e:
            logger.error("Store write failed", url=item.url, attempts=getattr(e, "attempts", 1), error=str(e))
            outcome = IngestOutcome.STORE_ERROR

        METRICS["ingest_outcomes"].labels(outcome=outcome.value).inc()
        if outcome is IngestOutcome.INSERTED:
            logger.info("Item inserted", url=item.url, name=item.name, sub_collection=item.sub_collection)
        elif outcome is IngestOutcome.ALREADY_EXISTS:
            logger.debug("Item already exists", url=item.url)
        return outcome
