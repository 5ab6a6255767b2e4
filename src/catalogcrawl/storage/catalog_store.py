"""
Manages the SQLite database backing the catalog.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterator, Optional

import aiosqlite
import structlog
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from catalogcrawl.config.config import StoreConfig
from catalogcrawl.errors import StoreBusyError, StoreError
from catalogcrawl.models import CatalogItem, IngestOutcome
from catalogcrawl.observability.metrics import METRICS

from .schema import COLUMNS, UNIQUE_URL_INDEX
from .schema import metadata as db_metadata

logger = structlog.get_logger(__name__)

# Incremented whenever the schema in schema.py changes.
CURRENT_SCHEMA_VERSION = 1

_COLUMN_LIST = ", ".join(COLUMNS)
_PLACEHOLDERS = ", ".join("?" for _ in COLUMNS)

_PUT_IF_ABSENT_SQL = (
    f"INSERT INTO catalog_items ({_COLUMN_LIST}) "
    f"SELECT {_PLACEHOLDERS} "
    "WHERE NOT EXISTS (SELECT 1 FROM catalog_items WHERE url = ?)"
)
_IMPORT_SQL = f"INSERT OR IGNORE INTO catalog_items ({_COLUMN_LIST}) VALUES ({_PLACEHOLDERS})"


def _is_lock_error(exc: sqlite3.Error) -> bool:
    message = str(exc).lower()
    return isinstance(exc, sqlite3.OperationalError) and ("locked" in message or "busy" in message)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate sqlite3 failures into the store error taxonomy."""
    try:
        yield
    except sqlite3.Error as e:
        if _is_lock_error(e):
            raise StoreBusyError(f"{operation}: database is locked") from e
        raise StoreError(f"{operation} failed: {e}") from e


def _values(item: CatalogItem) -> tuple[Any, ...]:
    row = item.to_row()
    return tuple(row[column] for column in COLUMNS)


class CatalogStore:
    """
    SQLite implementation of the backing store.

    Every write is a single statement inside ``BEGIN IMMEDIATE``, which
    serializes writers across connections and processes; ``put_if_absent`` is
    therefore atomic with respect to concurrent crawlers sharing the file.
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self.db_path = Path(config.db_path)
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=config.pool_size)
        self._connections: list[aiosqlite.Connection] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Creates the schema and opens the connection pool."""
        if self._initialized:
            return
        try:
            self._create_schema()
            for _ in range(self.config.pool_size):
                conn = await self._create_connection()
                self._connections.append(conn)
                await self._pool.put(conn)
            async with self.get_connection() as conn:
                await self._run_migrations(conn)
        except (sqlite3.Error, SQLAlchemyError, OSError) as e:
            await self.close()
            raise StoreError(f"Cannot open catalog store at {self.db_path}: {e}") from e
        self._initialized = True
        logger.info("Catalog store opened", db_path=str(self.db_path), pool_size=self.config.pool_size)

    def _create_schema(self) -> None:
        engine = create_engine(f"sqlite:///{self.db_path}")
        try:
            db_metadata.create_all(engine)
        finally:
            engine.dispose()

    async def _create_connection(self) -> aiosqlite.Connection:
        """Creates and configures a new database connection."""
        # Autocommit mode; transactions are opened explicitly.
        conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        if self.config.wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout_ms)};")
        conn.row_factory = aiosqlite.Row
        return conn

    async def _run_migrations(self, conn: aiosqlite.Connection) -> None:
        cursor = await conn.execute("PRAGMA user_version;")
        version_row = await cursor.fetchone()
        current_version = version_row[0] if version_row is not None else 0
        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info("Stamping schema version", previous=current_version, current=CURRENT_SCHEMA_VERSION)
            await conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION};")

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Gets a connection from the pool."""
        if not self._connections:
            raise StoreError("Catalog store is not open")
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    async def close(self) -> None:
        """Closes all connections in the pool."""
        while not self._pool.empty():
            self._pool.get_nowait()
        for conn in self._connections:
            await conn.close()
        self._connections.clear()
        self._initialized = False

    async def __aenter__(self) -> "CatalogStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _write(self, conn: aiosqlite.Connection, sql: str, params: tuple[Any, ...]) -> int:
        await conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = await conn.execute(sql, params)
            rowcount = cursor.rowcount
            await conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                await conn.execute("ROLLBACK")
            raise
        return rowcount

    # --- Backing store operations ---

    async def get(self, url: str) -> Optional[CatalogItem]:
        """Return the earliest record for ``url``, or None."""
        METRICS["store_operations"].labels(operation="get").inc()
        with _store_errors("get"):
            async with self.get_connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM catalog_items WHERE url = ? ORDER BY scraped_at LIMIT 1",
                    (url,),
                )
                row = await cursor.fetchone()
        return CatalogItem.from_row(row) if row is not None else None

    async def put_if_absent(self, item: CatalogItem) -> IngestOutcome:
        """Insert ``item`` unless a record with the same url exists."""
        METRICS["store_operations"].labels(operation="put_if_absent").inc()
        with _store_errors("put_if_absent"):
            async with self.get_connection() as conn:
                try:
                    inserted = await self._write(conn, _PUT_IF_ABSENT_SQL, _values(item) + (item.url,))
                except sqlite3.IntegrityError:
                    # Same (url, scraped_at) already stored.
                    return IngestOutcome.ALREADY_EXISTS
        return IngestOutcome.INSERTED if inserted == 1 else IngestOutcome.ALREADY_EXISTS

    async def delete(self, url: str, scraped_at: str) -> bool:
        """Delete one record by composite key. Deleting an absent record is not an error."""
        METRICS["store_operations"].labels(operation="delete").inc()
        with _store_errors("delete"):
            async with self.get_connection() as conn:
                removed = await self._write(
                    conn,
                    "DELETE FROM catalog_items WHERE url = ? AND scraped_at = ?",
                    (url, scraped_at),
                )
        return removed > 0

    async def scan_all(self, page_size: Optional[int] = None) -> AsyncIterator[CatalogItem]:
        """Yield every record in insertion order, one page per round trip."""
        size = page_size or self.config.scan_page_size
        last_rowid = 0
        while True:
            METRICS["store_operations"].labels(operation="scan").inc()
            with _store_errors("scan"):
                async with self.get_connection() as conn:
                    cursor = await conn.execute(
                        "SELECT rowid AS _rowid, * FROM catalog_items WHERE rowid > ? ORDER BY rowid LIMIT ?",
                        (last_rowid, size),
                    )
                    rows = await cursor.fetchall()
            for row in rows:
                yield CatalogItem.from_row(row)
            if len(rows) < size:
                return
            last_rowid = rows[-1]["_rowid"]

    # --- Maintenance ---

    async def import_record(self, item: CatalogItem) -> bool:
        """Unconditional write keyed by (url, scraped_at); used to migrate legacy exports."""
        METRICS["store_operations"].labels(operation="import").inc()
        with _store_errors("import"):
            async with self.get_connection() as conn:
                return await self._write(conn, _IMPORT_SQL, _values(item)) == 1

    async def count(self) -> int:
        with _store_errors("count"):
            async with self.get_connection() as conn:
                cursor = await conn.execute("SELECT COUNT(*) FROM catalog_items")
                row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def stats(self) -> Dict[str, int]:
        with _store_errors("stats"):
            async with self.get_connection() as conn:
                cursor = await conn.execute("SELECT COUNT(*), COUNT(DISTINCT url) FROM catalog_items")
                totals = await cursor.fetchone()
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM (SELECT url FROM catalog_items GROUP BY url HAVING COUNT(*) > 1)"
                )
                groups = await cursor.fetchone()
        return {
            "records": int(totals[0]) if totals else 0,
            "distinct_urls": int(totals[1]) if totals else 0,
            "duplicate_groups": int(groups[0]) if groups else 0,
        }

    async def enforce_unique_urls(self) -> None:
        """Add a UNIQUE index on url. Fails while duplicate groups remain."""
        try:
            async with self.get_connection() as conn:
                await conn.execute(f"CREATE UNIQUE INDEX IF NOT EXISTS {UNIQUE_URL_INDEX} ON catalog_items (url)")
        except sqlite3.IntegrityError as e:
            raise StoreError("Duplicate urls remain; run dedupe before enforcing uniqueness") from e
        except sqlite3.Error as e:
            raise StoreError(f"enforce_unique_urls failed: {e}") from e
        logger.info("Unique url index in place", index=UNIQUE_URL_INDEX)
