"""
Data models for catalog records, crawl sessions and duplicate groups.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

# Attribute names used by the previous store's exports.
LEGACY_FIELD_NAMES = {
    "ModelURL": "url",
    "ModelName": "name",
    "Author": "author",
    "License": "license",
    "Collection": "collection",
    "SubCollection": "sub_collection",
    "ScrapedAt": "scraped_at",
    "subCollection": "sub_collection",
    "scrapedAt": "scraped_at",
}

DESCRIPTIVE_FIELDS = ("name", "author", "license")

_UNPARSEABLE = datetime.max.replace(tzinfo=timezone.utc)


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a trailing Z."""
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp for ordering; unparseable values sort last."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return _UNPARSEABLE
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IngestOutcome(Enum):
    """Result of a conditional write."""

    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"
    STORE_ERROR = "store_error"


class CrawlState(Enum):
    """States of the crawl controller."""

    IDLE = "idle"
    FETCHING_LISTING = "fetching_listing"
    FILTERING_CANDIDATES = "filtering_candidates"
    FETCHING_DETAILS = "fetching_details"
    INGESTING = "ingesting"
    STOPPED = "stopped"


class StopReason(Enum):
    """Why a crawl session ended."""

    MAX_PAGES = "max_pages"
    AUTO_STOP = "auto_stop"
    LISTING_FAILED = "listing_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CatalogItem:
    """One discovered catalog item as persisted in the store.

    ``url`` is the business key. ``scraped_at`` is kept verbatim as stored so
    that a record can always be addressed by its exact composite key.
    """

    url: str
    name: str = ""
    author: str = ""
    license: str = ""
    collection: str = ""
    sub_collection: Optional[str] = None
    scraped_at: str = field(default_factory=utc_timestamp)

    @property
    def source(self) -> str:
        return urlparse(self.url).hostname or ""

    @property
    def scraped_at_dt(self) -> datetime:
        return parse_timestamp(self.scraped_at)

    @property
    def composite_key(self) -> Tuple[str, str]:
        return self.url, self.scraped_at

    def label(self) -> str:
        """Human readable label used when an operator reviews duplicates."""
        return f"{self.name or '<unnamed>'} (scrapedAt: {self.scraped_at})"

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["source"] = self.source
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CatalogItem":
        return cls(
            url=row["url"],
            name=row["name"] or "",
            author=row["author"] or "",
            license=row["license"] or "",
            collection=row["collection"] or "",
            sub_collection=row["sub_collection"],
            scraped_at=row["scraped_at"],
        )

    @classmethod
    def from_fields(
        cls,
        url: str,
        fields: Mapping[str, str],
        *,
        collection: str,
        sub_collection: Optional[str] = None,
        scraped_at: Optional[str] = None,
    ) -> "CatalogItem":
        """Build a record from extracted fields; absent fields become empty strings."""
        values = {name: (fields.get(name) or "").strip() for name in DESCRIPTIVE_FIELDS}
        return cls(
            url=url,
            collection=collection,
            sub_collection=sub_collection or None,
            scraped_at=scraped_at or utc_timestamp(),
            **values,
        )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "CatalogItem":
        """Build a record from an exported mapping, accepting legacy attribute names."""
        normalized: Dict[str, Any] = {}
        for key, value in record.items():
            normalized[LEGACY_FIELD_NAMES.get(key, key)] = value
        url = (normalized.get("url") or "").strip()
        if not url:
            raise ValueError("record has no url")
        scraped_at = normalized.get("scraped_at")
        if not scraped_at:
            raise ValueError(f"record for {url} has no scraped_at")
        return cls(
            url=url,
            name=normalized.get("name") or "",
            author=normalized.get("author") or "",
            license=normalized.get("license") or "",
            collection=normalized.get("collection") or "",
            sub_collection=normalized.get("sub_collection") or None,
            scraped_at=str(scraped_at),
        )


@dataclass(frozen=True)
class Candidate:
    """An item identifier found on a listing page, with its section label."""

    url: str
    label: Optional[str] = None


@dataclass(frozen=True)
class ListingPage:
    """Candidates discovered on one listing page."""

    page: int
    url: str
    candidates: Tuple[Candidate, ...] = ()

    @property
    def labels(self) -> List[str]:
        seen: List[str] = []
        for candidate in self.candidates:
            if candidate.label and candidate.label not in seen:
                seen.append(candidate.label)
        return seen


@dataclass(frozen=True)
class DuplicateGroup:
    """Records sharing one business key, ordered by ``scraped_at`` ascending."""

    business_key: str
    members: Tuple[CatalogItem, ...]

    @classmethod
    def build(cls, business_key: str, members: List[CatalogItem]) -> "DuplicateGroup":
        ordered = sorted(members, key=lambda item: (item.scraped_at_dt, item.scraped_at))
        return cls(business_key=business_key, members=tuple(ordered))

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class CrawlSession:
    """Counters for one crawl run. Owned by the controller; consumers get snapshots."""

    collection: str = ""
    pages_visited: int = 0
    candidates_seen: int = 0
    items_fetched: int = 0
    items_inserted: int = 0
    items_known: int = 0
    fetch_failures: int = 0
    store_errors: int = 0
    consecutive_empty_pages: int = 0
    http_requests: int = 0
    store_reads: int = 0
    store_writes: int = 0
    state: CrawlState = CrawlState.IDLE
    stop_reason: Optional[StopReason] = None

    def snapshot(self) -> "CrawlSession":
        return replace(self)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["stop_reason"] = self.stop_reason.value if self.stop_reason else None
        return data
