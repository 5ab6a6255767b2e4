"""
Database schema definition for the catalog store.
"""

from __future__ import annotations

from sqlalchemy import Column, Index, MetaData, PrimaryKeyConstraint, Table, Text

# Using a standard naming convention for database objects
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

# Records are addressed by (url, scraped_at) so that snapshots imported from
# the previous store stay individually deletable. New writes keep url unique
# through a conditional insert; see CatalogStore.put_if_absent.
catalog_items_table = Table(
    "catalog_items",
    metadata,
    Column("url", Text, nullable=False),
    Column("scraped_at", Text, nullable=False),
    Column("name", Text, nullable=False, default=""),
    Column("author", Text, nullable=False, default=""),
    Column("license", Text, nullable=False, default=""),
    Column("collection", Text, nullable=False, default=""),
    Column("sub_collection", Text),
    Column("source", Text, nullable=False, default=""),
    PrimaryKeyConstraint("url", "scraped_at"),
    Index("ix_catalog_items_url", "url"),
)

# Created by CatalogStore.enforce_unique_urls once duplicates are reconciled.
UNIQUE_URL_INDEX = "uq_catalog_items_url"

COLUMNS = ("url", "scraped_at", "name", "author", "license", "collection", "sub_collection", "source")
