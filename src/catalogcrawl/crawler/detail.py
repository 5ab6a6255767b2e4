"""
Detail page retrieval.
"""

from __future__ import annotations

from typing import Dict, Optional

import structlog

from catalogcrawl.crawler.rate_limiter import RequestPacer
from catalogcrawl.crawler.retry import RetryPolicy, classify_fetch_error
from catalogcrawl.models import DESCRIPTIVE_FIELDS, CatalogItem
from catalogcrawl.protocols import FetchClient, FieldExtractor

logger = structlog.get_logger(__name__)


class DetailFetcher:
    """
    Fetches one item page and turns it into a CatalogItem.

    Only a failed retrieval raises (a ``FetchError`` from the retry policy).
    Missing fields degrade to empty strings.
    """

    def __init__(
        self,
        client: FetchClient,
        extractor: FieldExtractor,
        retry: RetryPolicy,
        pacer: RequestPacer,
        *,
        collection: str,
    ):
        self.client = client
        self.extractor = extractor
        self.retry = retry
        self.pacer = pacer
        self.collection = collection

    def _extract(self, url: str, html: str) -> Dict[str, str]:
        try:
            return dict(self.extractor.extract(html))
        except Exception as e:
            # A broken extractor yields a partial record, never a failed item.
            logger.warning("Field extraction failed", url=url, error=str(e))
            return {}

    async def fetch(self, url: str, sub_collection: Optional[str] = None) -> CatalogItem:
        response = await self.retry.run(
            lambda: self.pacer.fetch(self.client, url, kind="detail"),
            classify_fetch_error,
            context=url,
        )
        fields = self._extract(url, response.text)
        item = CatalogItem.from_fields(url, fields, collection=self.collection, sub_collection=sub_collection)
        missing = [name for name in DESCRIPTIVE_FIELDS if not getattr(item, name)]
        if missing:
            logger.info("Partial record", url=url, missing=missing)
        return item
