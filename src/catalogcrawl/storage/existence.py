"""
Point lookups used to skip candidates that are already catalogued.
"""

from __future__ import annotations

import structlog

from catalogcrawl.errors import StoreError
from catalogcrawl.protocols import CatalogStoreProtocol

logger = structlog.get_logger(__name__)


class ExistenceIndex:
    """
    Answers "is this url already recorded?" at call time.

    Answers are not cached, so a negative result can go stale before the
    following write; Ingester's conditional write settles that race. A lookup
    that fails is reported as unknown for the same reason.
    """

    def __init__(self, store: CatalogStoreProtocol):
        self.store = store
        self.lookups = 0

    async def is_known(self, url: str) -> bool:
        self.lookups += 1
        try:
            return await self.store.get(url) is not None
        except StoreError as e:
            logger.warning("Existence check failed, treating as unknown", url=url, error=str(e))
            return False
