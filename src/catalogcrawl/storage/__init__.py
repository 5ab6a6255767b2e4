"""SQLite backing store for catalog records."""

from __future__ import annotations

from .catalog_store import CatalogStore
from .existence import ExistenceIndex
from .schema import metadata as db_metadata

__all__ = ["CatalogStore", "ExistenceIndex", "db_metadata"]
