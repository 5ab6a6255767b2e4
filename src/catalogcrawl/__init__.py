"""
catalogcrawl - incremental catalog crawler with duplicate reconciliation.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .container import Container
from .controller import CrawlController

__all__ = ["__version__", "Config", "Container", "CrawlController"]
