"""
Lightweight fakes for the crawler's collaborators.
"""

from typing import AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple, Union

from catalogcrawl.errors import PermanentFetchError, StoreError
from catalogcrawl.models import CatalogItem, IngestOutcome
from catalogcrawl.protocols import FetchResponse

Outcome = Union[str, BaseException, type]


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)

    @property
    def total(self) -> float:
        return sum(self.calls)


class FakeFetchClient:
    """
    Scripted fetch client.

    Each url maps to a list of outcomes consumed in order; the last outcome
    repeats. An outcome is an HTML body, an exception instance, or a FetchError
    subclass (instantiated per call). Unknown urls raise a 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, List[Outcome]] = {}
        self.calls: List[str] = []

    def add(self, url: str, *outcomes: Outcome) -> "FakeFetchClient":
        self.routes[url] = list(outcomes)
        return self

    def count(self, url: str) -> int:
        return self.calls.count(url)

    async def fetch(self, url: str) -> FetchResponse:
        self.calls.append(url)
        script = self.routes.get(url)
        if not script:
            raise PermanentFetchError("HTTP 404", url=url, status=404)
        outcome = script[0] if len(script) == 1 else script.pop(0)
        if isinstance(outcome, type) and issubclass(outcome, BaseException):
            raise outcome(f"scripted {outcome.__name__}", url=url)  # type: ignore[call-arg]
        if isinstance(outcome, BaseException):
            raise outcome
        return FetchResponse(status=200, body=outcome.encode("utf-8"), url=url, final_url=url)


class InMemoryStore:
    """
    Dict-backed store with the same contract as CatalogStore.

    ``failing_urls`` makes get/put_if_absent raise StoreError for those urls;
    ``failing_deletes`` does the same for delete by composite key.
    """

    def __init__(self, records: Sequence[CatalogItem] = ()) -> None:
        self.records: List[CatalogItem] = list(records)
        self.failing_urls: Set[str] = set()
        self.failing_deletes: Set[Tuple[str, str]] = set()
        self.deleted: List[Tuple[str, str]] = []

    def urls(self) -> List[str]:
        return [record.url for record in self.records]

    async def get(self, url: str) -> Optional[CatalogItem]:
        if url in self.failing_urls:
            raise StoreError(f"get failed for {url}")
        matches = sorted((r for r in self.records if r.url == url), key=lambda r: r.scraped_at)
        return matches[0] if matches else None

    async def put_if_absent(self, item: CatalogItem) -> IngestOutcome:
        if item.url in self.failing_urls:
            raise StoreError(f"put failed for {item.url}")
        if any(record.url == item.url for record in self.records):
            return IngestOutcome.ALREADY_EXISTS
        self.records.append(item)
        return IngestOutcome.INSERTED

    async def delete(self, url: str, scraped_at: str) -> bool:
        if (url, scraped_at) in self.failing_deletes:
            raise StoreError(f"delete failed for {url}")
        for record in self.records:
            if record.composite_key == (url, scraped_at):
                self.records.remove(record)
                self.deleted.append((url, scraped_at))
                return True
        return False

    async def scan_all(self, page_size: Optional[int] = None) -> AsyncIterator[CatalogItem]:
        for record in list(self.records):
            yield record


def listing_html(*hrefs: str, container: str = "crea-group") -> str:
    links = "\n".join(f'<a href="{href}">item</a>' for href in hrefs)
    return f'<html><body><div class="{container}">{links}</div></body></html>'


def detail_html(
    name: Optional[str] = "Benchy",
    author: Optional[str] = "alice",
    license: Optional[str] = "CC BY\n(Attribution)",
) -> str:
    parts = []
    if name is not None:
        parts.append(f'<h1 class="t0">{name}</h1>')
    if author is not None:
        parts.append(f'<span class="card__title--secondary">{author}</span>')
    if license is not None:
        parts.append(f'<a class="license">{license}</a>')
    return "<html><body>" + "".join(parts) + "</body></html>"
