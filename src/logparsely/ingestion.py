"""
Source supervision and ingestion for logparsely.

add_src() starts a shell command and two daemon threads for it:

- the ingestion thread reads the command's stdout line by line, turns each
  line into a record and writes it to the source's wide table;
- the monitor thread waits until either a stop is signaled or the ingestion
  thread finishes, kills the command if it is still running, reaps it, and
  releases the source from the SharedState wait-group.

Thread handles are not kept. The only record of a running source is the
SharedState counter, which the monitor thread decrements exactly once.
"""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import threading
from collections.abc import Iterator
from typing import IO

from logparsely.concurrency import SharedState
from logparsely.errors import LaunchError, StorageInsertionError, WideTableInstantiationError
from logparsely.flatten import flatten_json
from logparsely.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY_SEC
from logparsely.storage import RAW_UNPARSABLE_COL, EvolvingWideTable, SharedConnection

logger = logging.getLogger("logparsely")

# Applied in order before the catch-all below
TABLE_NAME_REPLACEMENTS = [
    (" ", "_"),
    (".", "_"),
    ("-", "_"),
    ("/", "_"),
    ("\\", "_"),
    ("~", "HOME"),
]
_UNSAFE_TABLE_CHARS = re.compile(r"[^A-Za-z0-9_]")

# A stream failing this many reads in a row is treated as closed
MAX_CONSECUTIVE_READ_ERRORS = 10

# How long a command may keep running after closing its output
EXIT_GRACE_SEC = 1.0


def sanitize_table_name(cmd: str) -> str:
    """Derive a table name from a shell command.

    Examples:
        >>> sanitize_table_name("tail -f ~/app.log")
        'tail__f_HOME_app_log'
        >>> sanitize_table_name("kubectl logs pod | jq -c .")
        'kubectl_logs_pod___jq__c__'
    """
    name = cmd
    for old, new in TABLE_NAME_REPLACEMENTS:
        name = name.replace(old, new)
    return _UNSAFE_TABLE_CHARS.sub("_", name)


def line_to_record(line: str) -> dict[str, str]:
    """Parse one output line into a flat record.

    Lines that are not a JSON object are kept verbatim in the fallback
    column instead.
    """
    try:
        value = json.loads(line)
    except (ValueError, RecursionError):
        return {RAW_UNPARSABLE_COL: line}
    if not isinstance(value, dict):
        return {RAW_UNPARSABLE_COL: line}
    return flatten_json(value)


def add_src(
    cmd: str,
    shared_connection: SharedConnection,
    shared_state: SharedState,
    max_write_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay: float = DEFAULT_RETRY_DELAY_SEC,
) -> str:
    """Pipe a shell command's stdout into its own wide table.

    Returns as soon as the command and its threads are started; the caller
    tracks completion through ``shared_state``.

    Args:
        cmd: Shell command to run
        shared_connection: Lock-guarded database handle shared by all sources
        shared_state: Stop broadcast and wait-group for the whole run
        max_write_attempts: Total attempts for each schema change or insert
        retry_delay: Seconds between write attempts

    Returns:
        Name of the table the command writes to

    Raises:
        LaunchError: If the command is empty or could not be started
    """
    table_name = sanitize_table_name(cmd.strip())
    if not table_name:
        raise LaunchError("Cannot ingest an empty command")

    try:
        process = _spawn(cmd)
    except (OSError, ValueError) as e:
        raise LaunchError(f"Failed to start {cmd!r}: {e}") from e

    finished = threading.Event()
    wake = threading.Event()
    shared_state.subscribe(wake)
    shared_state.enter()

    try:
        threading.Thread(
            target=_ingest,
            args=(process, table_name, shared_connection, finished, wake),
            kwargs={"max_write_attempts": max_write_attempts, "retry_delay": retry_delay},
            name=f"logparsely-ingest-{table_name}",
            daemon=True,
        ).start()
        threading.Thread(
            target=_monitor,
            args=(process, table_name, shared_state, finished, wake),
            name=f"logparsely-monitor-{table_name}",
            daemon=True,
        ).start()
    except RuntimeError as e:
        _kill(process)
        shared_state.leave()
        raise LaunchError(f"Failed to start ingestion threads for {cmd!r}: {e}") from e

    logger.debug(f"Started {cmd!r} (pid {process.pid}) into table {table_name}")
    return table_name


def _spawn(cmd: str) -> subprocess.Popen:
    kwargs = {}
    if os.name == "posix":
        # Own process group, so pipelines inside the command die together
        kwargs["start_new_session"] = True
    return subprocess.Popen(
        cmd,
        shell=True,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        **kwargs,
    )


def _kill(process: subprocess.Popen) -> None:
    """Forcibly terminate a command and everything in its process group."""
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        elif process.poll() is None:
            process.kill()
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.error(
            f"Command started by logparsely (pid {process.pid}) failed to exit, "
            f"please kill the process using its pid: {e}"
        )


def _read_lines(stream: IO[bytes], table_name: str) -> Iterator[str]:
    """Yield decoded lines until end of stream, skipping unreadable ones."""
    consecutive_errors = 0
    while True:
        try:
            raw = stream.readline()
        except OSError as e:
            consecutive_errors += 1
            logger.error(f"Error reading line from {table_name}: {e}")
            if consecutive_errors >= MAX_CONSECUTIVE_READ_ERRORS:
                logger.error(f"Giving up on {table_name} after {consecutive_errors} read errors")
                return
            continue
        consecutive_errors = 0

        if not raw:
            return

        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error(f"Error reading line from {table_name}: {e}")
            continue

        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        yield line


def _ingest(
    process: subprocess.Popen,
    table_name: str,
    shared_connection: SharedConnection,
    finished: threading.Event,
    wake: threading.Event,
    max_write_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay: float = DEFAULT_RETRY_DELAY_SEC,
) -> None:
    try:
        try:
            table = EvolvingWideTable.open(
                table_name,
                shared_connection,
                max_attempts=max_write_attempts,
                retry_delay=retry_delay,
            )
        except WideTableInstantiationError as e:
            logger.error(f"Error setting up table {table_name}: {e}")
            _kill(process)
            return

        rows = 0
        for line in _read_lines(process.stdout, table_name):
            try:
                table.insert_data(shared_connection, line_to_record(line))
                rows += 1
            except StorageInsertionError as e:
                logger.error(f"Error inserting data into {table_name}: {e}")

        logger.debug(f"End of output for {table_name} after {rows} rows")
    finally:
        process.stdout.close()
        finished.set()
        wake.set()


def _monitor(
    process: subprocess.Popen,
    table_name: str,
    shared_state: SharedState,
    finished: threading.Event,
    wake: threading.Event,
) -> None:
    # Only this thread reaps the child, so its pid cannot be reused before a kill
    try:
        wake.wait()
        if not finished.is_set():
            logger.debug(f"Stop requested, killing command for {table_name}")
            _kill(process)
        # Rows already read are still being written; let the ingestion thread drain
        finished.wait()
        try:
            process.wait(timeout=EXIT_GRACE_SEC)
        except subprocess.TimeoutExpired:
            logger.debug(f"Command for {table_name} kept running after closing output, killing it")
            _kill(process)
            process.wait()
    finally:
        shared_state.unsubscribe(wake)
        shared_state.leave()
