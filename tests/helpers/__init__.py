from .fakes import FakeFetchClient, InMemoryStore, RecordingSleep, detail_html, listing_html
from .metric_delta import metric_delta

__all__ = [
    "FakeFetchClient",
    "InMemoryStore",
    "RecordingSleep",
    "detail_html",
    "listing_html",
    "metric_delta",
]
