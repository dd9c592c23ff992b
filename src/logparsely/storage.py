"""
Wide table storage for logparsely, backed by DuckDB.

Every ingestion source writes into its own table. Tables start with a single
fallback column and grow a new VARCHAR column whenever a record carries a key
that has not been seen before. Columns are never removed or renamed.

All access to the database goes through a SharedConnection, a lock-guarded
handle around one DuckDB connection shared by every source thread:

    shared = SharedConnection(duckdb.connect("logs/run-logparsely.db"))
    table = EvolvingWideTable.open("tail_f_app_log", shared)
    table.insert_data(shared, {"level": "info", "msg": "started"})
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import duckdb

from logparsely.errors import (
    LockError,
    RecordInsertionError,
    SchemaManipulationError,
    SqlError,
)
from logparsely.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY_SEC, attempt_with_retry

logger = logging.getLogger("logparsely")

RAW_UNPARSABLE_COL = "raw_unparsable_line"

DEFAULT_LOCK_TIMEOUT_SEC = 30.0

# Table names come from sanitize_table_name(); anything else is refused.
SAFE_TABLE_NAME = re.compile(r"^[A-Za-z0-9_]+$")

# Catalog names may carry quoting delimiters from older writers
_QUOTE_CHARS = '`"'


def quote_identifier(name: str) -> str:
    """Quote an identifier for DuckDB, doubling embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


class SharedConnection:
    """A DuckDB connection guarded by a lock.

    The connection is only reachable inside ``with shared.lock() as conn:``.
    Acquisition waits at most ``timeout`` seconds (``None`` waits forever)
    and raises LockError when the lock is not obtained or the connection has
    been closed.
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        timeout: float | None = DEFAULT_LOCK_TIMEOUT_SEC,
    ):
        self._conn: duckdb.DuckDBPyConnection | None = conn
        self._lock = threading.Lock()
        self._timeout = timeout

    @contextmanager
    def lock(self) -> Iterator[duckdb.DuckDBPyConnection]:
        acquired = self._lock.acquire(timeout=-1 if self._timeout is None else self._timeout)
        if not acquired:
            raise LockError(
                f"Failed to acquire lock on shared connection within {self._timeout}s"
            )
        try:
            if self._conn is None:
                raise LockError("Shared connection has been closed")
            yield self._conn
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close the underlying connection. Later lock() calls raise LockError."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def closed(self) -> bool:
        return self._conn is None

    def __enter__(self) -> SharedConnection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class EvolvingWideTable:
    """A sparse table of text columns whose schema grows as records arrive.

    The store keeps the set of known column names in memory. It never holds
    the connection itself: every call receives the SharedConnection and
    acquires it only for the duration of one statement batch.

    DuckDB treats column names case-insensitively, so the cache is keyed by
    the lower-cased name and keys differing only by case share a column.
    """

    def __init__(
        self,
        table_name: str,
        columns: list[str],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SEC,
    ):
        self.table_name = table_name
        self._columns: dict[str, str] = {}
        for name in columns:
            self._columns[name.lower()] = name
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @classmethod
    def open(
        cls,
        table_name: str,
        shared_connection: SharedConnection,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SEC,
    ) -> EvolvingWideTable:
        """Create the table if needed and load its current columns.

        Args:
            table_name: Sanitized table name (letters, digits, underscore)
            shared_connection: Lock-guarded database handle
            max_attempts: Total attempts for each schema change or insert
            retry_delay: Seconds between attempts

        Returns:
            EvolvingWideTable ready for insert_data()

        Raises:
            LockError: If the shared connection cannot be acquired
            SqlError: If creating or introspecting the table fails
        """
        if not SAFE_TABLE_NAME.match(table_name):
            raise ValueError(f"Unsafe table name: {table_name!r}")

        create_stmt = (
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} "
            f"({quote_identifier(RAW_UNPARSABLE_COL)} VARCHAR)"
        )

        with shared_connection.lock() as conn:
            try:
                conn.execute(create_stmt)
                rows = conn.execute(
                    """
                    SELECT column_name
                    FROM information_schema.columns
                    WHERE table_schema = 'main' AND lower(table_name) = lower(?)
                    ORDER BY ordinal_position
                    """,
                    [table_name],
                ).fetchall()
            except duckdb.Error as e:
                raise SqlError(f"Failed to set up table {table_name}: {e}") from e

        columns = [row[0].strip(_QUOTE_CHARS) for row in rows]
        logger.debug(f"Opened table {table_name} with {len(columns)} columns")
        return cls(table_name, columns, max_attempts=max_attempts, retry_delay=retry_delay)

    @property
    def columns(self) -> list[str]:
        """Snapshot of the known column names."""
        return list(self._columns.values())

    def has_column(self, name: str) -> bool:
        return name.lower() in self._columns

    def insert_data(self, shared_connection: SharedConnection, data: dict[str, str]) -> None:
        """Insert one record, adding any columns it introduces first.

        New columns are added in a single transaction before the row is
        written. Columns absent from ``data`` are left NULL for this row.

        Raises:
            LockError: If the shared connection cannot be acquired
            SchemaManipulationError: If adding columns failed on every attempt
            RecordInsertionError: If the insert failed on every attempt
        """
        row = self._resolve_row(data)

        new_columns = [name for name in row if name.lower() not in self._columns]
        if new_columns:
            self._add_columns(shared_connection, new_columns)

        # Known columns keep the spelling they were created with
        targets = [self._columns[name.lower()] for name in row]
        values = list(row.values())
        table = quote_identifier(self.table_name)
        if targets:
            placeholders = ", ".join("?" for _ in targets)
            joined = ", ".join(quote_identifier(col) for col in targets)
            insert_stmt = f"INSERT INTO {table} ({joined}) VALUES ({placeholders})"
        else:
            insert_stmt = f"INSERT INTO {table} DEFAULT VALUES"

        def insert() -> None:
            with shared_connection.lock() as conn:
                if values:
                    conn.execute(insert_stmt, values)
                else:
                    conn.execute(insert_stmt)

        try:
            attempt_with_retry(
                insert,
                max_attempts=self._max_attempts,
                delay=self._retry_delay,
                description=f"insert into {self.table_name}",
            )
        except duckdb.Error as e:
            raise RecordInsertionError(
                f"Failed to insert record into {self.table_name}: {e}"
            ) from e

    def _resolve_row(self, data: dict[str, str]) -> dict[str, str]:
        """Drop unstorable keys and fold keys that differ only by case."""
        row: dict[str, str] = {}
        seen: dict[str, str] = {}
        for key, value in data.items():
            if not key:
                logger.warning(f"Dropping value with empty key in {self.table_name}")
                continue
            folded = key.lower()
            if folded in seen:
                logger.debug(f"Key {key!r} collides with {seen[folded]!r}; keeping the later value")
                del row[seen[folded]]
            seen[folded] = key
            row[key] = value
        return row

    def _add_columns(self, shared_connection: SharedConnection, new_columns: list[str]) -> None:
        table = quote_identifier(self.table_name)
        statements = [
            f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {quote_identifier(col)} VARCHAR"
            for col in new_columns
        ]

        def migrate() -> None:
            with shared_connection.lock() as conn:
                conn.begin()
                try:
                    for stmt in statements:
                        conn.execute(stmt)
                    conn.commit()
                except duckdb.Error:
                    _rollback(conn)
                    raise

        try:
            attempt_with_retry(
                migrate,
                max_attempts=self._max_attempts,
                delay=self._retry_delay,
                description=f"schema change on {self.table_name}",
            )
        except duckdb.Error as e:
            raise SchemaManipulationError(
                f"Failed to add columns {new_columns} to {self.table_name}: {e}"
            ) from e

        for col in new_columns:
            self._columns[col.lower()] = col
        logger.debug(f"Added {len(new_columns)} column(s) to {self.table_name}")


def _rollback(conn: duckdb.DuckDBPyConnection) -> None:
    try:
        conn.rollback()
    except duckdb.Error as e:
        # No transaction left to roll back (e.g. the commit itself aborted it)
        logger.debug(f"Rollback failed: {e}")
