"""
Duplicate reconciliation for records written before url uniqueness was enforced.

The scanner groups stored records by url; the resolver deletes the members a
selector picks (interactively or by the keep-earliest batch policy) by their
(url, scraped_at) composite key.
"""

from .resolver import DuplicateResolver, ResolutionReport
from .scanner import DuplicateScanner
from .selectors import InteractiveSelector, keep_earliest

__all__ = [
    "DuplicateResolver",
    "DuplicateScanner",
    "InteractiveSelector",
    "ResolutionReport",
    "keep_earliest",
]
