"""
Tests for record construction and timestamps.
"""

from datetime import datetime, timedelta, timezone

import pytest

from catalogcrawl.models import CatalogItem, CrawlSession, StopReason, utc_timestamp


@pytest.mark.unit
class TestCatalogItem:
    def test_utc_timestamp_format(self):
        moment = datetime(2024, 3, 1, 12, 30, 5, 123456, tzinfo=timezone(timedelta(hours=2)))
        assert utc_timestamp(moment) == "2024-03-01T10:30:05.123Z"

    def test_from_record_accepts_legacy_names(self):
        item = CatalogItem.from_record(
            {
                "ModelURL": "https://catalog.test/m/1",
                "ModelName": "Benchy",
                "Author": "alice",
                "License": "CC BY",
                "Collection": "latest",
                "SubCollection": "2024-03",
                "ScrapedAt": "2024-03-01T10:00:00.000Z",
            }
        )
        assert item == CatalogItem(
            url="https://catalog.test/m/1",
            name="Benchy",
            author="alice",
            license="CC BY",
            collection="latest",
            sub_collection="2024-03",
            scraped_at="2024-03-01T10:00:00.000Z",
        )

    @pytest.mark.parametrize(
        "record",
        [{"scraped_at": "2024-03-01T10:00:00.000Z"}, {"url": "  "}, {"url": "https://catalog.test/m/1"}],
    )
    def test_from_record_requires_url_and_timestamp(self, record):
        with pytest.raises(ValueError):
            CatalogItem.from_record(record)

    def test_from_fields_fills_missing_with_empty_strings(self):
        item = CatalogItem.from_fields("https://catalog.test/m/1", {"name": " Benchy "}, collection="latest")
        assert (item.name, item.author, item.license) == ("Benchy", "", "")
        assert item.sub_collection is None
        assert item.source == "catalog.test"

    def test_label(self):
        item = CatalogItem(url="https://catalog.test/m/1", scraped_at="2024-03-01T10:00:00.000Z")
        assert item.label() == "<unnamed> (scrapedAt: 2024-03-01T10:00:00.000Z)"


@pytest.mark.unit
def test_session_snapshot_is_independent():
    session = CrawlSession(collection="latest")
    snapshot = session.snapshot()
    session.items_inserted = 3
    session.stop_reason = StopReason.AUTO_STOP

    assert snapshot.items_inserted == 0
    assert session.as_dict()["stop_reason"] == "auto_stop"
    assert snapshot.as_dict()["stop_reason"] is None
