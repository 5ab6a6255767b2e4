"""
Structural contracts for the collaborators the crawler consumes.

Concrete implementations live in ``catalogcrawl.crawler.http_client``,
``catalogcrawl.storage.catalog_store`` and ``catalogcrawl.extractor.fields``;
tests substitute lightweight fakes that satisfy the same protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Dict, Optional, Protocol, Sequence, Union

from catalogcrawl.models import CatalogItem, DuplicateGroup, IngestOutcome


@dataclass
class FetchResponse:
    """A successful HTTP response."""

    status: int
    body: bytes
    url: str
    final_url: str
    elapsed: float = 0.0

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class FetchClient(Protocol):
    """Retrieves one address.

    Implementations raise ``TransientNetworkError``, ``RateLimitedError`` or
    ``PermanentFetchError`` so that retry classification stays in one place.
    """

    async def fetch(self, url: str) -> FetchResponse: ...


class CatalogStoreProtocol(Protocol):
    """Backing store keyed by item url, addressed for deletion by ``(url, scraped_at)``."""

    async def get(self, url: str) -> Optional[CatalogItem]: ...

    async def put_if_absent(self, item: CatalogItem) -> IngestOutcome: ...

    async def delete(self, url: str, scraped_at: str) -> bool: ...

    def scan_all(self, page_size: Optional[int] = None) -> AsyncIterator[CatalogItem]: ...


class FieldExtractor(Protocol):
    """Maps raw page content to named string fields. Absent fields map to ``""``; never raises."""

    def extract(self, html: str) -> Dict[str, str]: ...


class GroupSelector(Protocol):
    """Chooses which members of a duplicate group to delete (indices into ``group.members``)."""

    def __call__(self, group: DuplicateGroup) -> Union[Sequence[int], Awaitable[Sequence[int]]]: ...
