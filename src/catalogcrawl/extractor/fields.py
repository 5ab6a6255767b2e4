"""
Selector-driven field extraction for detail pages.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping

import structlog
from bs4 import BeautifulSoup

from catalogcrawl.config.config import SiteProfile

logger = structlog.get_logger(__name__)


class SelectorFieldExtractor:
    """
    Maps a detail page to named fields using one CSS selector per field.

    The first matching element wins. A field whose selector matches nothing,
    or cannot be evaluated, comes back as ``""``; ``extract`` never raises.
    """

    def __init__(self, field_selectors: Mapping[str, str], first_line_fields: Iterable[str] = ()):
        self.field_selectors = dict(field_selectors)
        self.first_line_fields = frozenset(first_line_fields)

    @classmethod
    def from_profile(cls, profile: SiteProfile) -> "SelectorFieldExtractor":
        return cls(profile.field_selectors, profile.first_line_fields)

    def _value(self, soup: BeautifulSoup, name: str, selector: str) -> str:
        try:
            element = soup.select_one(selector)
        except Exception as e:
            logger.debug("Field selector failed", field=name, selector=selector, error=str(e))
            return ""
        if element is None:
            logger.debug("Field not found", field=name, selector=selector)
            return ""
        lines = [line.strip() for line in element.get_text("\n").splitlines() if line.strip()]
        if not lines:
            return ""
        if name in self.first_line_fields:
            return lines[0]
        return " ".join(lines)

    def extract(self, html: str) -> Dict[str, str]:
        try:
            soup = BeautifulSoup(html or "", "html.parser")
        except Exception as e:
            logger.warning("Unparseable detail page", error=str(e))
            return {name: "" for name in self.field_selectors}
        return {name: self._value(soup, name, selector) for name, selector in self.field_selectors.items()}
