"""Command-line interface for catalogcrawl."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.status import Status
from rich.table import Table

from catalogcrawl import __version__
from catalogcrawl.config import Config, CrawlerConfig, RetryConfig, load_config
from catalogcrawl.container import Container
from catalogcrawl.controller import CrawlController
from catalogcrawl.dedup.resolver import ResolutionReport
from catalogcrawl.dedup.selectors import InteractiveSelector, keep_earliest
from catalogcrawl.errors import ConfigurationError, StoreError
from catalogcrawl.models import CatalogItem, CrawlSession
from catalogcrawl.observability.logging import configure_logging
from catalogcrawl.observability.metrics import start_metrics_server

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StatusLine:
    """Renders CrawlSession snapshots on a single rich status line."""

    def __init__(self, status: Status):
        self.status = status

    def __call__(self, snapshot: CrawlSession) -> None:
        self.status.update(
            f"[green]{snapshot.state.value}[/green] | pages: {snapshot.pages_visited} | "
            f"HTTP requests: {snapshot.http_requests} | store reads: {snapshot.store_reads} | "
            f"store writes: {snapshot.store_writes} | new: {snapshot.items_inserted} | "
            f"known: {snapshot.items_known}"
        )


class SignalStopper:
    """Routes SIGINT/SIGTERM to a controller's cooperative stop."""

    signals = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, controller: CrawlController):
        self.controller = controller
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous: Dict[int, Any] = {}

    def _handle(self, signum: int = 0, frame: Any = None) -> None:
        console.print("\n[yellow]Interrupt received, stopping after the current item...[/yellow]")
        self.controller.request_stop()

    def install(self) -> None:
        self._loop = asyncio.get_running_loop()
        for sig in self.signals:
            self._previous[sig] = signal.getsignal(sig)
            try:
                self._loop.add_signal_handler(sig, self._handle)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, self._handle)

    def uninstall(self) -> None:
        """Remove the stop handlers and put back whatever was installed before."""
        for sig, previous in self._previous.items():
            if self._loop is not None:
                self._loop.remove_signal_handler(sig)
            if previous is not None:
                signal.signal(sig, previous)
        self._previous.clear()
        self._loop = None


def _load(ctx: click.Context) -> Config:
    """Load configuration once per invocation and set up logging and metrics."""
    if "config" not in ctx.obj:
        config = load_config(ctx.obj["config_path"])
        if ctx.obj["log_level"]:
            config.monitoring.log_level = ctx.obj["log_level"]
        configure_logging(config.monitoring)
        start_metrics_server(config.monitoring.metrics_port)
        ctx.obj["config"] = config
    return ctx.obj["config"]  # type: ignore[no-any-return]


def _run(ctx: click.Context, command: Callable[[Config], Awaitable[T]]) -> T:
    """Run an async command, turning fatal startup errors into exit status 1."""
    try:
        config = _load(ctx)
        return asyncio.run(command(config))
    except (ConfigurationError, StoreError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def _counters_table(session: CrawlSession) -> Table:
    table = Table(title=f"Crawl summary: {session.collection}")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", style="magenta", justify="right")
    for key, value in session.as_dict().items():
        if key in ("collection", "state"):
            continue
        table.add_row(key.replace("_", " "), str(value))
    return table


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides the configuration file)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """catalogcrawl - incremental catalog crawler and duplicate reconciliation tool."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None
    ctx.obj["log_level"] = log_level.upper() if log_level else None


@cli.command()
@click.argument("profile")
@click.option("--pages", type=click.IntRange(min=1), help="Highest listing page to visit")
@click.option("--auto-stop/--no-auto-stop", default=None, help="Stop after consecutive pages with nothing new")
@click.option("--auto-stop-pages", type=click.IntRange(min=1), help="Empty pages that trigger auto-stop")
@click.option("--delay", type=click.FloatRange(min=0), help="Seconds between outbound requests")
@click.option("--retries", type=click.IntRange(min=0), help="Retries per request after the first attempt")
@click.pass_context
def crawl(
    ctx: click.Context,
    profile: str,
    pages: Optional[int],
    auto_stop: Optional[bool],
    auto_stop_pages: Optional[int],
    delay: Optional[float],
    retries: Optional[int],
) -> None:
    """Crawl the listing pages of PROFILE and ingest new items."""
    crawler_overrides = {
        key: value
        for key, value in {
            "max_pages": pages,
            "auto_stop": auto_stop,
            "auto_stop_pages": auto_stop_pages,
            "request_delay": delay,
        }.items()
        if value is not None
    }

    async def run_crawl(config: Config) -> CrawlSession:
        try:
            config.crawler = CrawlerConfig(**{**config.crawler.model_dump(), **crawler_overrides})
            if retries is not None:
                config.retry = RetryConfig(**{**config.retry.model_dump(), "retries": retries})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid run parameters: {e}") from e

        container = Container(config)
        async with container.lifecycle():
            controller = await container.crawl_controller(profile)
            structlog.contextvars.bind_contextvars(collection=controller.session.collection)
            stopper = SignalStopper(controller)
            stopper.install()
            try:
                with console.status("Starting crawl...") as status:
                    controller.subscribe(StatusLine(status))
                    session = await controller.run()
            finally:
                stopper.uninstall()
                structlog.contextvars.unbind_contextvars("collection")
            if controller.stop_requested:
                console.print("[yellow]Crawl stopped on request; the counters below are final.[/yellow]")
            return session

    session = _run(ctx, run_crawl)
    console.print(_counters_table(session))


def _print_report(report: ResolutionReport, dry_run: bool) -> None:
    table = Table(title="Reconciliation" + (" (dry run)" if dry_run else ""))
    table.add_column("Result", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("groups reviewed", str(report.groups_reviewed))
    table.add_row("groups untouched", str(report.groups_untouched))
    if dry_run:
        table.add_row("would delete", str(len(report.planned)))
    else:
        table.add_row("deleted", str(len(report.deleted)))
        table.add_row("already absent", str(len(report.already_absent)))
    table.add_row("failed", str(len(report.failures)))
    console.print(table)
    for (url, scraped_at), error in report.failures:
        console.print(f"[red]Failed to delete[/red] {url} ({scraped_at}): {error}")


@cli.command()
@click.option("--keep-earliest", "batch", is_flag=True, help="Delete every member except the earliest, without prompting")
@click.option("--dry-run", is_flag=True, help="Report what would be deleted without deleting")
@click.pass_context
def dedupe(ctx: click.Context, batch: bool, dry_run: bool) -> None:
    """Find records sharing a url and remove the selected duplicates."""

    async def run_dedupe(config: Config) -> ResolutionReport:
        container = Container(config)
        async with container.lifecycle():
            scanner = await container.duplicate_scanner()
            groups = await scanner.scan()
            console.print(f"Scanned {scanner.records_scanned} records, found {len(groups)} duplicate groups.")
            selector = keep_earliest if batch else InteractiveSelector(console)
            resolver = await container.duplicate_resolver(selector, dry_run=dry_run)
            return await resolver.resolve(groups)

    report = _run(ctx, run_dedupe)
    _print_report(report, dry_run)


@cli.command("import-records")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_records(ctx: click.Context, file: Path) -> None:
    """Load JSON-lines records from FILE, keeping every (url, scraped_at) snapshot."""

    async def run_import(config: Config) -> Dict[str, int]:
        counts = {"imported": 0, "skipped": 0, "invalid": 0}
        container = Container(config)
        async with container.lifecycle():
            store = await container.get_store()
            with open(file, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        item = CatalogItem.from_record(json.loads(line))
                    except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
                        counts["invalid"] += 1
                        logger.warning("Invalid record", line=line_number, error=str(e))
                        continue
                    if await store.import_record(item):
                        counts["imported"] += 1
                    else:
                        counts["skipped"] += 1
        return counts

    counts = _run(ctx, run_import)
    console.print(
        f"Imported {counts['imported']} records "
        f"({counts['skipped']} already present, {counts['invalid']} invalid lines)."
    )


@cli.command("enforce-unique")
@click.pass_context
def enforce_unique(ctx: click.Context) -> None:
    """Add a UNIQUE index on url once duplicates have been reconciled."""

    async def run_enforce(config: Config) -> None:
        container = Container(config)
        async with container.lifecycle():
            store = await container.get_store()
            await store.enforce_unique_urls()

    _run(ctx, run_enforce)
    console.print("[green]Unique url index in place.[/green]")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show record, url and duplicate group counts."""

    async def run_stats(config: Config) -> Dict[str, int]:
        container = Container(config)
        async with container.lifecycle():
            store = await container.get_store()
            return await store.stats()

    result = _run(ctx, run_stats)
    table = Table(title="Catalog store")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta", justify="right")
    for key, value in result.items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
