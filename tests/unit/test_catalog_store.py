"""
Tests for the SQLite catalog store.
"""

import asyncio

import pytest

from catalogcrawl.config.config import StoreConfig
from catalogcrawl.errors import StoreBusyError, StoreError
from catalogcrawl.models import CatalogItem, IngestOutcome
from catalogcrawl.storage.catalog_store import CatalogStore, _store_errors


def make_item(url="https://catalog.test/m/1", scraped_at="2024-03-01T10:00:00.000Z", **fields):
    return CatalogItem(url=url, scraped_at=scraped_at, collection="latest", **fields)


@pytest.mark.unit
class TestCatalogStore:
    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        item = make_item(name="Benchy", author="alice", license="CC BY", sub_collection="2024-03")

        assert await store.put_if_absent(item) is IngestOutcome.INSERTED
        stored = await store.get(item.url)

        assert stored == item
        assert await store.get("https://catalog.test/missing") is None

    @pytest.mark.asyncio
    async def test_second_put_for_same_url_reports_already_exists(self, store):
        first = make_item(scraped_at="2024-03-01T10:00:00.000Z", name="first")
        second = make_item(scraped_at="2024-03-02T10:00:00.000Z", name="second")

        assert await store.put_if_absent(first) is IngestOutcome.INSERTED
        assert await store.put_if_absent(second) is IngestOutcome.ALREADY_EXISTS
        assert await store.count() == 1
        assert (await store.get(first.url)).name == "first"

    @pytest.mark.asyncio
    async def test_identical_record_reports_already_exists(self, store):
        item = make_item()
        await store.put_if_absent(item)
        assert await store.put_if_absent(item) is IngestOutcome.ALREADY_EXISTS

    @pytest.mark.asyncio
    async def test_concurrent_writers_on_separate_connections(self, store_config):
        """Two stores on one file race on the same url; exactly one insert wins."""
        first = CatalogStore(store_config)
        second = CatalogStore(store_config)
        await first.initialize()
        await second.initialize()
        try:
            outcomes = await asyncio.gather(
                first.put_if_absent(make_item(scraped_at="2024-03-01T10:00:00.000Z")),
                second.put_if_absent(make_item(scraped_at="2024-03-01T10:00:00.001Z")),
            )
            assert sorted(o.value for o in outcomes) == ["already_exists", "inserted"]
            assert await first.count() == 1
        finally:
            await first.close()
            await second.close()

    @pytest.mark.asyncio
    async def test_many_concurrent_writers_one_record(self, store):
        items = [make_item(scraped_at=f"2024-03-01T10:00:00.{i:03d}Z") for i in range(8)]
        outcomes = await asyncio.gather(*(store.put_if_absent(item) for item in items))

        assert outcomes.count(IngestOutcome.INSERTED) == 1
        assert outcomes.count(IngestOutcome.ALREADY_EXISTS) == 7
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store):
        item = make_item()
        await store.put_if_absent(item)

        assert await store.delete(*item.composite_key) is True
        assert await store.delete(*item.composite_key) is False
        assert await store.get(item.url) is None

    @pytest.mark.asyncio
    async def test_delete_addresses_exact_snapshot(self, store):
        older = make_item(scraped_at="2024-01-01T00:00:00.000Z")
        newer = make_item(scraped_at="2024-02-01T00:00:00.000Z")
        await store.import_record(older)
        await store.import_record(newer)

        await store.delete(*newer.composite_key)

        assert await store.get(older.url) == older
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_get_returns_earliest_snapshot(self, store):
        await store.import_record(make_item(scraped_at="2024-02-01T00:00:00.000Z", name="later"))
        await store.import_record(make_item(scraped_at="2024-01-01T00:00:00.000Z", name="earlier"))

        assert (await store.get("https://catalog.test/m/1")).name == "earlier"

    @pytest.mark.asyncio
    async def test_scan_all_pages_through_every_record(self, store):
        urls = [f"https://catalog.test/m/{i}" for i in range(5)]
        for url in urls:
            await store.put_if_absent(make_item(url=url))

        # store_config uses a page size of 2, so this spans three pages.
        scanned = [item.url async for item in store.scan_all()]
        assert scanned == urls

        scanned_big_pages = [item.url async for item in store.scan_all(page_size=100)]
        assert scanned_big_pages == urls

    @pytest.mark.asyncio
    async def test_scan_all_on_empty_store(self, store):
        assert [item async for item in store.scan_all()] == []

    @pytest.mark.asyncio
    async def test_import_record_keeps_legacy_duplicates(self, store):
        assert await store.import_record(make_item(scraped_at="2024-01-01T00:00:00.000Z")) is True
        assert await store.import_record(make_item(scraped_at="2024-01-02T00:00:00.000Z")) is True
        assert await store.import_record(make_item(scraped_at="2024-01-02T00:00:00.000Z")) is False

        assert await store.stats() == {"records": 2, "distinct_urls": 1, "duplicate_groups": 1}

    @pytest.mark.asyncio
    async def test_enforce_unique_urls_requires_reconciled_store(self, store):
        first = make_item(scraped_at="2024-01-01T00:00:00.000Z")
        second = make_item(scraped_at="2024-01-02T00:00:00.000Z")
        await store.import_record(first)
        await store.import_record(second)

        with pytest.raises(StoreError, match="Duplicate urls remain"):
            await store.enforce_unique_urls()

        await store.delete(*second.composite_key)
        await store.enforce_unique_urls()

        # With the index in place even an unconditional import cannot add a second snapshot.
        assert await store.import_record(second) is False
        assert await store.put_if_absent(second) is IngestOutcome.ALREADY_EXISTS

    @pytest.mark.asyncio
    async def test_closed_store_raises_store_error(self, store_config):
        catalog = CatalogStore(store_config)
        with pytest.raises(StoreError):
            await catalog.get("https://catalog.test/m/1")

    @pytest.mark.asyncio
    async def test_unopenable_store_is_fatal(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        config = StoreConfig.model_construct(
            db_path=blocker / "catalog.db", pool_size=1, busy_timeout_ms=100, scan_page_size=10, wal_mode=True
        )
        with pytest.raises(StoreError, match="Cannot open catalog store"):
            await CatalogStore(config).initialize()


@pytest.mark.unit
class TestStoreErrorTranslation:
    def test_lock_errors_become_store_busy(self):
        import sqlite3

        with pytest.raises(StoreBusyError):
            with _store_errors("put_if_absent"):
                raise sqlite3.OperationalError("database is locked")

    def test_other_errors_become_store_error(self):
        import sqlite3

        with pytest.raises(StoreError) as exc_info:
            with _store_errors("get"):
                raise sqlite3.DatabaseError("file is not a database")
        assert not isinstance(exc_info.value, StoreBusyError)
