"""
Listing page retrieval and candidate discovery.
"""

from __future__ import annotations

import re
from typing import Iterator, Optional
from urllib.parse import urljoin, urlparse

import structlog
from bs4 import BeautifulSoup, Tag

from catalogcrawl.config.config import SiteProfile
from catalogcrawl.crawler.rate_limiter import RequestPacer
from catalogcrawl.crawler.retry import RetryPolicy, classify_fetch_error
from catalogcrawl.models import Candidate, ListingPage
from catalogcrawl.protocols import FetchClient

logger = structlog.get_logger(__name__)

MONTHS = {
    "january": "01",
    "february": "02",
    "march": "03",
    "april": "04",
    "may": "05",
    "june": "06",
    "july": "07",
    "august": "08",
    "september": "09",
    "october": "10",
    "november": "11",
    "december": "12",
}

_YEAR = re.compile(r"\b(\d{4})\b")
_IGNORED_SCHEMES = ("javascript:", "mailto:", "tel:", "#")


def month_year_label(text: str) -> Optional[str]:
    """Turn a header such as ``"Best of March 2024"`` into ``"2024-03"``."""
    lowered = text.lower()
    for month, number in MONTHS.items():
        if month in lowered:
            year = _YEAR.search(lowered)
            if year:
                return f"{year.group(1)}-{number}"
    return None


def section_label(text: str, rule: str) -> Optional[str]:
    text = " ".join(text.split())
    if rule == "month_year":
        return month_year_label(text)
    if rule == "text":
        return text or None
    return None


def _item_link(element: Tag) -> Optional[str]:
    if element.name == "a" and element.get("href"):
        return str(element["href"])
    anchor = element.find("a", href=True)
    if anchor is not None:
        return str(anchor["href"])
    return None


def _absolute(href: str, base_url: str) -> Optional[str]:
    href = href.strip()
    if not href or href.lower().startswith(_IGNORED_SCHEMES):
        return None
    absolute = urljoin(base_url, href)
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute.split("#", 1)[0]


def _site(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def iter_candidates(html: str, profile: SiteProfile, base_url: str) -> Iterator[Candidate]:
    """
    Walk the listing in document order.

    Section headers update the label given to following items; the first
    element matching ``stop_selector`` ends the walk. A url is yielded once per
    page even if the listing repeats it. Links to hosts other than the profile's ``base_url`` host are dropped.
    """
    soup = BeautifulSoup(html, "html.parser")

    use_sections = bool(profile.section_selector) and profile.label_rule != "none"
    selectors = [profile.item_selector]
    section_ids: set[int] = set()
    stop_ids: set[int] = set()
    if use_sections:
        selectors.append(profile.section_selector)  # type: ignore[arg-type]
        section_ids = {id(el) for el in soup.select(profile.section_selector)}  # type: ignore[arg-type]
    if profile.stop_selector:
        selectors.append(profile.stop_selector)
        stop_ids = {id(el) for el in soup.select(profile.stop_selector)}

    site = _site(profile.base_url)
    current_label: Optional[str] = None
    seen: set[str] = set()
    for element in soup.select(", ".join(selectors)):
        if id(element) in stop_ids:
            break
        if id(element) in section_ids:
            label = section_label(element.get_text(" "), profile.label_rule)
            if label:
                current_label = label
            continue
        href = _item_link(element)
        url = _absolute(href, base_url) if href else None
        if url is None or url in seen:
            continue
        if _site(url) != site:
            logger.debug("Offsite link skipped", url=url)
            continue
        seen.add(url)
        yield Candidate(url=url, label=current_label)


class ListingFetcher:
    """Fetches one listing page through the retry policy and request pacer."""

    def __init__(self, client: FetchClient, profile: SiteProfile, retry: RetryPolicy, pacer: RequestPacer):
        self.client = client
        self.profile = profile
        self.retry = retry
        self.pacer = pacer

    async def fetch(self, page: int) -> ListingPage:
        url = self.profile.listing_url(page)
        response = await self.retry.run(
            lambda: self.pacer.fetch(self.client, url, kind="listing"),
            classify_fetch_error,
            context=url,
        )
        candidates = tuple(iter_candidates(response.text, self.profile, response.final_url or url))
        listing = ListingPage(page=page, url=url, candidates=candidates)
        logger.info("Listing fetched", page=page, url=url, candidates=len(candidates), sections=listing.labels)
        return listing
