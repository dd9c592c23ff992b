"""
Core utilities and shared types for logparsely CLI commands.

This module contains configuration, database path handling, and the
ingestion orchestration that the subcommands share.
"""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import duckdb
import yaml

from logparsely.concurrency import SharedState
from logparsely.errors import ConfigError, LaunchError
from logparsely.ingestion import add_src
from logparsely.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY_SEC
from logparsely.storage import DEFAULT_LOCK_TIMEOUT_SEC, SharedConnection

logger = logging.getLogger("logparsely")

# ============================================================================
# Configuration
# ============================================================================

CONFIG_FILE = "logparsely.yaml"
LOGS_DIR = "logs"
DB_FILE_SUFFIX = "-logparsely.db"


@dataclass
class LogparselyConfig:
    """Settings for a logparsely run, loaded from logparsely.yaml.

    Example config file:
        logs_dir: logs
        max_write_attempts: 3
        retry_delay_sec: 1.0
        lock_timeout_sec: 30
        shutdown_progress_sec: 5
    """

    logs_dir: Path = Path(LOGS_DIR)
    max_write_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC
    lock_timeout_sec: float = DEFAULT_LOCK_TIMEOUT_SEC
    shutdown_progress_sec: float = 5.0

    @classmethod
    def find(cls, start_dir: Path | None = None) -> LogparselyConfig:
        """Load logparsely.yaml from start_dir or its parents, or use defaults.

        Args:
            start_dir: Directory to start searching from (default: cwd)
        """
        if start_dir is None:
            start_dir = Path.cwd()

        for p in [start_dir, *list(start_dir.parents)]:
            config_path = p / CONFIG_FILE
            if config_path.is_file():
                return cls.load(config_path)

        return cls()

    @classmethod
    def load(cls, config_path: Path) -> LogparselyConfig:
        """Load configuration from a YAML file.

        Unknown keys are ignored.

        Raises:
            ConfigError: If the file cannot be read or a value has the wrong type
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")

        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            values[f.name] = _coerce(f.name, data[f.name], config_path)

        return cls(**values)


def _coerce(name: str, value: Any, config_path: Path) -> Any:
    if name == "logs_dir":
        if not isinstance(value, str):
            raise ConfigError(f"{config_path}: logs_dir must be a string")
        return Path(value).expanduser()
    if name == "max_write_attempts":
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"{config_path}: max_write_attempts must be a positive integer")
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"{config_path}: {name} must be a non-negative number")
    return float(value)


def load_config(config_path: str | None = None) -> LogparselyConfig:
    """Load the config named on the command line, or search for one."""
    if config_path:
        return LogparselyConfig.load(Path(config_path).expanduser())
    return LogparselyConfig.find()


# ============================================================================
# Database
# ============================================================================


def get_db_path(db_file_path: str | None, logs_dir: Path = Path(LOGS_DIR)) -> Path:
    """Resolve the database file for this run.

    Uses ``db_file_path`` when given, otherwise a fresh
    ``<logs_dir>/<uuid>-logparsely.db`` that purge can later remove.
    """
    if db_file_path:
        return Path(db_file_path).expanduser()
    return logs_dir / f"{uuid.uuid4()}{DB_FILE_SUFFIX}"


def open_shared_connection(db_path: Path, config: LogparselyConfig) -> SharedConnection:
    """Open the run's database or exit; there is no point continuing without it."""
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(db_path))
    except (OSError, duckdb.Error) as e:
        print(f"Error creating database connection: {e}", file=sys.stderr)
        sys.exit(1)
    return SharedConnection(conn, timeout=config.lock_timeout_sec)


# ============================================================================
# Orchestration
# ============================================================================


def add_source(
    cmd: str,
    shared_connection: SharedConnection,
    shared_state: SharedState,
    config: LogparselyConfig,
) -> bool:
    """Add one ingestion source, reporting the outcome.

    Returns:
        True if the source was started
    """
    print(f"Adding data ingestion source {cmd}")
    try:
        table_name = add_src(
            cmd,
            shared_connection,
            shared_state,
            max_write_attempts=config.max_write_attempts,
            retry_delay=config.retry_delay_sec,
        )
    except LaunchError as e:
        print(f"Adding data ingestion source {cmd} failed: {e}", file=sys.stderr)
        return False

    print(f"Data ingestion source {cmd} added successfully (table {table_name})")
    return True


def noninteractive_mode(
    shared_connection: SharedConnection,
    srcs: list[str],
    shared_state: SharedState,
    config: LogparselyConfig,
) -> int:
    """Start every source; a failing source does not stop the others.

    Returns:
        Number of sources started
    """
    started = 0
    for cmd in srcs:
        if add_source(cmd, shared_connection, shared_state, config):
            started += 1
    return started


def shutdown(shared_state: SharedState, config: LogparselyConfig) -> None:
    """Stop every source and block until all of them have finished."""
    print("Closing background tasks")
    shared_state.signal_stop()
    shared_state.wait_all_done(progress_interval=config.shutdown_progress_sec or None)
