"""
Ingestion commands for logparsely CLI.

Handles the noninteractive mode (all sources given up front) and the
interactive mode (sources typed one at a time).
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TextIO

from logparsely.commands.core import (
    add_source,
    get_db_path,
    load_config,
    noninteractive_mode,
    open_shared_connection,
    shutdown,
)
from logparsely.concurrency import SharedState

logger = logging.getLogger("logparsely")

QUIT_WORDS = {"q", "quit", "exit"}


def _wait_for_quit(shared_state: SharedState, stream: TextIO) -> None:
    """Block until the operator types 'q' or presses Ctrl-C.

    If input is closed (e.g. running detached) only Ctrl-C or a stop
    signaled elsewhere ends the wait.
    """
    try:
        for line in stream:
            if line.strip().lower() in QUIT_WORDS:
                return
        logger.debug("Input closed; waiting for Ctrl-C")
        shared_state.wait_for_stop()
    except KeyboardInterrupt:
        print()


def cmd_noninteractive(args: argparse.Namespace) -> None:
    """Ingest every source given with --srcs until the operator quits."""
    config = load_config(getattr(args, "config", None))
    db_path = get_db_path(args.db_file_path, config.logs_dir)
    print(f"All data is being streamed into DuckDB database: {db_path}")

    shared_state = SharedState()
    with open_shared_connection(db_path, config) as shared_connection:
        started = noninteractive_mode(shared_connection, args.srcs, shared_state, config)
        if started == 0:
            print("No ingestion source could be started", file=sys.stderr)

        print("Press 'q' to exit")
        _wait_for_quit(shared_state, sys.stdin)

        shutdown(shared_state, config)

    print(f"All data has been saved to {db_path}")


def cmd_interactive(args: argparse.Namespace) -> None:
    """Prompt for source commands one at a time until the operator quits."""
    config = load_config(getattr(args, "config", None))
    db_path = get_db_path(args.db_file_path, config.logs_dir)
    print(f"All data is being streamed into DuckDB database: {db_path}")
    print("Enter a shell command to ingest its output, or 'q' to exit")

    shared_state = SharedState()
    with open_shared_connection(db_path, config) as shared_connection:
        while True:
            try:
                line = input("logparsely> ")
            except (EOFError, KeyboardInterrupt):
                print()
                break

            cmd = line.strip()
            if not cmd:
                continue
            if cmd.lower() in QUIT_WORDS:
                break
            add_source(cmd, shared_connection, shared_state, config)

        shutdown(shared_state, config)

    print(f"All data has been saved to {db_path}")
