"""
Finds records that share a business key.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional

import structlog

from catalogcrawl.models import CatalogItem, DuplicateGroup
from catalogcrawl.protocols import CatalogStoreProtocol

logger = structlog.get_logger(__name__)


class DuplicateScanner:
    """Reads the whole store and groups records by url."""

    def __init__(self, store: CatalogStoreProtocol, page_size: Optional[int] = None):
        self.store = store
        self.page_size = page_size
        self.records_scanned = 0
        self.skipped = 0

    async def scan(self) -> List[DuplicateGroup]:
        """
        Return every group with two or more members.

        Groups come back in first-seen order; members are ordered by
        ``scraped_at`` ascending. Records without a url cannot be grouped and
        are counted in ``skipped``.
        """
        by_url: Dict[str, List[CatalogItem]] = defaultdict(list)
        self.records_scanned = 0
        self.skipped = 0
        async for item in self.store.scan_all(self.page_size):
            self.records_scanned += 1
            if not item.url:
                self.skipped += 1
                continue
            by_url[item.url].append(item)

        groups = [DuplicateGroup.build(url, members) for url, members in by_url.items() if len(members) > 1]
        logger.info(
            "Duplicate scan complete",
            records=self.records_scanned,
            distinct_urls=len(by_url),
            duplicate_groups=len(groups),
            skipped=self.skipped,
        )
        return groups
