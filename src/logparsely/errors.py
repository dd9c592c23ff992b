"""
Exception types for logparsely.

Launch errors are reported per source, instantiation errors end a single
source's ingestion, insertion errors are reported per record.
"""

from __future__ import annotations


class LogparselyError(Exception):
    """Base class for all logparsely errors."""


class ConfigError(LogparselyError):
    """The configuration file could not be read or holds invalid values."""


class LaunchError(LogparselyError):
    """An ingestion source could not be started."""


class WideTableInstantiationError(LogparselyError):
    """A wide table could not be created or introspected."""


class SqlError(WideTableInstantiationError):
    """Table creation or catalog introspection failed in the database."""


class StorageInsertionError(LogparselyError):
    """A record could not be written to its wide table."""


class SchemaManipulationError(StorageInsertionError):
    """Adding new columns failed after all retry attempts."""


class RecordInsertionError(StorageInsertionError):
    """Inserting the row failed after all retry attempts."""


class LockError(WideTableInstantiationError, StorageInsertionError):
    """The shared database connection could not be acquired."""
