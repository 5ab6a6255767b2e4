"""Field extraction for detail pages."""

from .fields import SelectorFieldExtractor

__all__ = ["SelectorFieldExtractor"]
