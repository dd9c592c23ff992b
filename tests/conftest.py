"""Shared fixtures for logparsely tests."""

import os
import shutil
import sys
import tempfile
import time
from pathlib import Path

import duckdb
import pytest

from logparsely.concurrency import SharedState
from logparsely.storage import SharedConnection

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmp = tempfile.mkdtemp()
    yield Path(tmp)
    shutil.rmtree(tmp)


@pytest.fixture
def chdir_temp(temp_dir):
    """Change to temp directory and restore after test."""
    original = os.getcwd()
    os.chdir(temp_dir)
    yield temp_dir
    os.chdir(original)


@pytest.fixture
def shared_connection():
    """A lock-guarded in-memory DuckDB connection."""
    shared = SharedConnection(duckdb.connect(":memory:"), timeout=5.0)
    yield shared
    shared.close()


@pytest.fixture
def shared_state():
    """A fresh stop broadcast / wait-group."""
    return SharedState()


def fetch_rows(shared, table, columns):
    """Return rows of the given columns in ingestion order."""
    select = ", ".join(f'"{c}"' for c in columns)
    with shared.lock() as conn:
        return conn.execute(f'SELECT {select} FROM "{table}" ORDER BY rowid').fetchall()


def table_columns(shared, table):
    """Return the set of column names DuckDB reports for a table."""
    with shared.lock() as conn:
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_name = ?",
            [table],
        ).fetchall()
    return {r[0] for r in rows}


def wait_until(predicate, timeout=10.0, interval=0.02):
    """Poll predicate until it is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FailingConnection:
    """Proxy that makes matching statements fail a number of times."""

    def __init__(self, conn, prefix, failures):
        self._conn = conn
        self.prefix = prefix
        self.failures = failures
        self.attempts = 0

    def execute(self, sql, *args):
        if sql.startswith(self.prefix):
            self.attempts += 1
            if self.failures > 0:
                self.failures -= 1
                raise duckdb.IOException("database is busy")
        return self._conn.execute(sql, *args)

    def __getattr__(self, name):
        return getattr(self._conn, name)


def failing_shared(prefix, failures):
    """SharedConnection whose statements starting with prefix fail `failures` times."""
    proxy = FailingConnection(duckdb.connect(":memory:"), prefix, failures)
    return SharedConnection(proxy, timeout=5.0), proxy


def count_rows(shared, table):
    """Row count of a table, or 0 if it does not exist yet."""
    try:
        with shared.lock() as conn:
            return conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
    except duckdb.Error:
        return 0
