"""
Defines Prometheus metrics for the crawler and the reconciliation tool.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import start_http_server

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# The module can be imported more than once under the test runner; reusing an
# already-registered collector avoids "Duplicated timeseries" errors.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        # Counters register under the name without the "_total" suffix.
        existing = _PROM_REGISTRY._names_to_collectors.get(name.removesuffix("_total"))
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race; fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name.removesuffix("_total")]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "http_requests": Counter(
            "catalogcrawl_http_requests_total",
            "Outbound HTTP requests, including retries",
            ["kind"],
        ),
        "fetch_failures": Counter(
            "catalogcrawl_fetch_failures_total",
            "Fetch attempts that raised, by failure class",
            ["failure"],
        ),
        "retries": Counter(
            "catalogcrawl_retries_total",
            "Retries scheduled by the retry policy, by class",
            ["retry_class"],
        ),
        "store_operations": Counter(
            "catalogcrawl_store_operations_total",
            "Backing store operations by kind",
            ["operation"],
        ),
        "ingest_outcomes": Counter(
            "catalogcrawl_ingest_outcomes_total",
            "Conditional write outcomes",
            ["outcome"],
        ),
        "duplicates_deleted": Counter(
            "catalogcrawl_duplicates_deleted_total",
            "Duplicate records removed by the reconciliation tool",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()

_server_port: Optional[int] = None


def start_metrics_server(port: Optional[int]) -> None:
    """Expose METRICS on ``port``; a no-op when disabled or already started."""
    global _server_port
    if port is None or _server_port is not None:
        return
    start_http_server(port)
    _server_port = port
    logger.info("Prometheus exporter started", port=port)
