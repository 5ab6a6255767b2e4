"""Configuration for catalogcrawl."""

from .config import (
    Config,
    CrawlerConfig,
    MonitoringConfig,
    RetryConfig,
    SiteProfile,
    StoreConfig,
    find_config_file,
    load_config,
)

__all__ = [
    "Config",
    "CrawlerConfig",
    "MonitoringConfig",
    "RetryConfig",
    "SiteProfile",
    "StoreConfig",
    "find_config_file",
    "load_config",
]
