"""
logparsely - stream shell command output into DuckDB wide tables.

Example usage:
    import duckdb
    from logparsely import SharedConnection, SharedState, add_src

    shared = SharedConnection(duckdb.connect("events.db"))
    state = SharedState()
    add_src("tail -f app.jsonl", shared, state)
    ...
    state.signal_stop()
    state.wait_all_done()
"""

__version__ = "0.1.0"

from logparsely.concurrency import SharedState
from logparsely.flatten import flatten_json
from logparsely.ingestion import add_src, sanitize_table_name
from logparsely.storage import RAW_UNPARSABLE_COL, EvolvingWideTable, SharedConnection

__all__ = [
    "EvolvingWideTable",
    "RAW_UNPARSABLE_COL",
    "SharedConnection",
    "SharedState",
    "__version__",
    "add_src",
    "flatten_json",
    "sanitize_table_name",
]
