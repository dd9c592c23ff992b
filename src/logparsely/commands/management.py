"""
Management commands for logparsely CLI.

Handles purging generated database files.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from logparsely.commands.core import DB_FILE_SUFFIX, load_config

logger = logging.getLogger("logparsely")


def purge(logs_dir: Path) -> int:
    """Delete generated database files (and their WAL files) in logs_dir.

    Files that cannot be deleted are reported and skipped.

    Returns:
        Number of files removed
    """
    if not logs_dir.is_dir():
        print(f"Failed to read directory {logs_dir}", file=sys.stderr)
        return 0

    removed = 0
    for path in sorted(logs_dir.iterdir()):
        if not path.is_file():
            continue
        if not (path.name.endswith(DB_FILE_SUFFIX) or path.name.endswith(DB_FILE_SUFFIX + ".wal")):
            continue
        try:
            path.unlink()
        except OSError as e:
            print(f"Error deleting {path}: {e}", file=sys.stderr)
            continue
        logger.debug(f"Removed {path}")
        removed += 1
    return removed


def cmd_purge(args: argparse.Namespace) -> None:
    """Remove every generated database file from the logs directory."""
    config = load_config(getattr(args, "config", None))
    print("Purging all data files from temp storage")
    removed = purge(config.logs_dir)
    print(f"Temp data files cleaned ({removed} removed)")
