"""
Tests for the existence index and the conditional-write ingester.
"""

import pytest

from catalogcrawl.crawler.retry import RetryPolicy
from catalogcrawl.errors import StoreBusyError, StoreError
from catalogcrawl.ingest import Ingester
from catalogcrawl.models import CatalogItem, IngestOutcome
from catalogcrawl.observability.metrics import METRICS
from catalogcrawl.storage.existence import ExistenceIndex
from tests.helpers.fakes import InMemoryStore, RecordingSleep
from tests.helpers.metric_delta import metric_delta

URL = "https://catalog.test/m/1"


class ScriptedStore(InMemoryStore):
    """Raises the scripted errors from put_if_absent before delegating."""

    def __init__(self, errors):
        super().__init__()
        self.errors = list(errors)
        self.put_calls = 0

    async def put_if_absent(self, item):
        self.put_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return await super().put_if_absent(item)


@pytest.mark.unit
class TestExistenceIndex:
    @pytest.mark.asyncio
    async def test_known_and_unknown(self):
        store = InMemoryStore([CatalogItem(url=URL)])
        index = ExistenceIndex(store)

        assert await index.is_known(URL) is True
        assert await index.is_known("https://catalog.test/m/2") is False
        assert index.lookups == 2

    @pytest.mark.asyncio
    async def test_answers_are_not_cached(self):
        store = InMemoryStore()
        index = ExistenceIndex(store)

        assert await index.is_known(URL) is False
        await store.put_if_absent(CatalogItem(url=URL))
        assert await index.is_known(URL) is True

    @pytest.mark.asyncio
    async def test_lookup_failure_is_treated_as_unknown(self):
        store = InMemoryStore([CatalogItem(url=URL)])
        store.failing_urls.add(URL)

        assert await ExistenceIndex(store).is_known(URL) is False


@pytest.mark.unit
class TestIngester:
    @pytest.mark.asyncio
    async def test_idempotent_ingestion(self):
        store = InMemoryStore()
        ingester = Ingester(store, RetryPolicy(sleep=RecordingSleep()))

        first = await ingester.ingest(CatalogItem(url=URL, scraped_at="2024-01-01T00:00:00.000Z"))
        second = await ingester.ingest(CatalogItem(url=URL, scraped_at="2024-01-02T00:00:00.000Z"))

        assert first is IngestOutcome.INSERTED
        assert second is IngestOutcome.ALREADY_EXISTS
        assert store.urls() == [URL]
        assert ingester.writes == 2

    @pytest.mark.asyncio
    async def test_idempotent_ingestion_against_sqlite(self, store):
        ingester = Ingester(store, RetryPolicy(sleep=RecordingSleep()))

        assert await ingester.ingest(CatalogItem(url=URL)) is IngestOutcome.INSERTED
        assert await ingester.ingest(CatalogItem(url=URL)) is IngestOutcome.ALREADY_EXISTS
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_already_exists_is_never_retried(self):
        sleep = RecordingSleep()
        store = ScriptedStore([])
        await store.put_if_absent(CatalogItem(url=URL))
        ingester = Ingester(store, RetryPolicy(sleep=sleep))

        assert await ingester.ingest(CatalogItem(url=URL)) is IngestOutcome.ALREADY_EXISTS
        assert store.put_calls == 2
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_lock_contention_is_retried(self):
        sleep = RecordingSleep()
        store = ScriptedStore([StoreBusyError("locked")])
        ingester = Ingester(store, RetryPolicy(retries=3, reset_backoff=4.0, sleep=sleep))

        assert await ingester.ingest(CatalogItem(url=URL)) is IngestOutcome.INSERTED
        assert store.put_calls == 2
        assert sleep.calls == [4.0]

    @pytest.mark.asyncio
    async def test_store_error_is_returned_not_raised(self):
        sleep = RecordingSleep()
        store = ScriptedStore([StoreError("permission denied")])
        ingester = Ingester(store, RetryPolicy(sleep=sleep))

        with metric_delta(METRICS["ingest_outcomes"].labels(outcome="store_error"), 1):
            outcome = await ingester.ingest(CatalogItem(url=URL))

        assert outcome is IngestOutcome.STORE_ERROR
        assert store.put_calls == 1
        assert sleep.calls == []
        assert store.records == []

    @pytest.mark.asyncio
    async def test_persistent_lock_contention_becomes_store_error(self):
        store = ScriptedStore([StoreBusyError("locked")] * 5)
        ingester = Ingester(store, RetryPolicy(retries=2, sleep=RecordingSleep()))

        assert await ingester.ingest(CatalogItem(url=URL)) is IngestOutcome.STORE_ERROR
        assert store.put_calls == 3
