"""
Configuration management for catalogcrawl using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlencode, urljoin

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from catalogcrawl.errors import ConfigurationError

# --- Setup Logging ---
log = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("catalogcrawl.yaml", "catalogcrawl.yml", "config.yaml")

# --- Nested Configuration Models ---


class CrawlerConfig(BaseModel):
    """Pagination and politeness settings for one crawl session."""

    max_pages: int = Field(default=10, ge=1, description="Highest listing page number to visit.")
    auto_stop: bool = Field(default=True, description="Stop after consecutive pages yield nothing new.")
    auto_stop_pages: int = Field(default=2, ge=1, description="Consecutive empty pages that trigger auto-stop.")
    request_delay: float = Field(default=3.0, ge=0, description="Minimum seconds between outbound requests.")
    timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds.")
    user_agent: str = Field(
        default="catalogcrawl/0.1 (+https://pypi.org/project/catalogcrawl/)",
        description="User-Agent string for HTTP requests.",
    )


class RetryConfig(BaseModel):
    """Bounded retry settings shared by page fetches, detail fetches and store writes."""

    retries: int = Field(default=3, ge=0, description="Retries after the first attempt.")
    reset_backoff: float = Field(default=4.0, ge=0, description="Seconds to wait after a connection reset.")
    throttle_backoff: float = Field(default=10.0, ge=0, description="Seconds to wait after HTTP 429.")
    max_backoff: float = Field(default=60.0, ge=0, description="Longest wait a Retry-After header may impose.")


class StoreConfig(BaseModel):
    """Configuration for the SQLite backing store."""

    db_path: Path = Field(
        default_factory=lambda: Path.home() / ".catalogcrawl" / "catalog.db",
        description="SQLite database file path",
    )
    pool_size: int = Field(default=4, ge=1, description="Size of the connection pool.")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="How long a writer waits for a lock.")
    scan_page_size: int = Field(default=500, ge=1, description="Rows fetched per page during full scans.")
    wal_mode: bool = Field(default=True, description="Enable Write-Ahead Logging for concurrent crawlers.")

    @field_validator("db_path", mode="before")
    @classmethod
    def ensure_db_directory(cls, v: Any) -> Path:
        """Ensure database directory exists."""
        path = Path(v) if not isinstance(v, Path) else v
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


class MonitoringConfig(BaseModel):
    """Logging and metrics settings."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[str] = Field(default=None, description="Path to a JSON log file. If None, logs to console.")
    metrics_port: Optional[int] = Field(default=None, description="Port for the Prometheus exporter. None to disable.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


class SiteProfile(BaseModel):
    """How to walk one catalog listing and read its detail pages."""

    base_url: str = Field(description="Scheme and host, e.g. https://catalog.example.com")
    listing_path: str = Field(description="Listing path template containing {page}.")
    query_params: Dict[str, str] = Field(default_factory=dict)
    item_selector: str = Field(default="a", description="CSS selector for item links or their containers.")
    section_selector: Optional[str] = Field(default=None, description="Headers that label following items.")
    stop_selector: Optional[str] = Field(default=None, description="Element after which parsing stops.")
    label_rule: Literal["none", "month_year", "text"] = "none"
    collection: Optional[str] = Field(default=None, description="Provenance label stored on each record.")
    field_selectors: Dict[str, str] = Field(default_factory=dict)
    first_line_fields: List[str] = Field(default_factory=lambda: ["license"])

    @field_validator("listing_path")
    @classmethod
    def require_page_placeholder(cls, v: str) -> str:
        if "{page}" not in v:
            raise ValueError("listing_path must contain a {page} placeholder")
        return v

    def listing_url(self, page: int) -> str:
        url = urljoin(self.base_url.rstrip("/") + "/", self.listing_path.format(page=page).lstrip("/"))
        if self.query_params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(self.query_params)}"
        return url


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "catalogcrawl"
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    profiles: Dict[str, SiteProfile] = Field(default_factory=dict)

    model_config = SettingsConfigDict(env_prefix="CATALOGCRAWL_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls()
        try:
            return cls(**yaml_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    def profile(self, name: str) -> SiteProfile:
        try:
            return self.profiles[name]
        except KeyError:
            known = ", ".join(sorted(self.profiles)) or "none"
            raise ConfigurationError(f"Unknown profile '{name}' (configured: {known})") from None

    def collection_for(self, name: str) -> str:
        return self.profile(name).collection or name


def find_config_file(directory: Path | None = None) -> Path | None:
    current_dir = directory or Path.cwd()
    for file_name in CONFIG_FILE_NAMES:
        path = current_dir / file_name
        if path.exists():
            return path
    return None


def load_config(path: Path | None = None) -> Config:
    """Load configuration from an explicit path, a discovered file, or defaults."""
    config_path = path or find_config_file()
    if config_path:
        log.info("Loading configuration from: %s", config_path)
        return Config.from_yaml(config_path)
    log.info("No config file found. Using default settings.")
    try:
        return Config()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
