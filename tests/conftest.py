"""
Shared test configuration for catalogcrawl.

Provides an on-disk catalog store per test, recorded (non-blocking) sleeps
and scripted fetch clients so retry, backoff and pacing behaviour can be
asserted without wall-clock waits or network access.
"""

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from catalogcrawl.config.config import Config, CrawlerConfig, RetryConfig, SiteProfile, StoreConfig
from catalogcrawl.storage.catalog_store import CatalogStore
from tests.helpers.fakes import RecordingSleep


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest.fixture
def store_config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(db_path=tmp_path / "catalog.db", pool_size=2, busy_timeout_ms=5000, scan_page_size=2)


@pytest_asyncio.fixture
async def store(store_config: StoreConfig) -> AsyncGenerator[CatalogStore, None]:
    catalog = CatalogStore(store_config)
    await catalog.initialize()
    yield catalog
    await catalog.close()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def profile() -> SiteProfile:
    return SiteProfile(
        base_url="https://catalog.test",
        listing_path="/en/latest/page/{page}",
        query_params={"only_free": "true"},
        item_selector="div.crea-group a",
        collection="latest",
        field_selectors={
            "name": ".t0",
            "author": ".card__title--secondary",
            "license": ".license",
        },
    )


@pytest.fixture
def test_config(tmp_path: Path, store_config: StoreConfig, profile: SiteProfile) -> Config:
    return Config(
        crawler=CrawlerConfig(max_pages=5, auto_stop=True, auto_stop_pages=2, request_delay=0.0),
        retry=RetryConfig(retries=3, reset_backoff=4.0, throttle_backoff=10.0),
        store=store_config,
        profiles={"latest": profile},
    )
