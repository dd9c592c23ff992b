"""
logparsely CLI - stream shell command output into DuckDB wide tables.

Usage:
    logparsely noninteractive -s CMD [-s CMD ...] [-d DB]   Ingest the given commands
    logparsely interactive [-d DB]                          Add commands at a prompt
    logparsely purge                                        Remove generated databases

Every command gets its own table, named after the command. Each stdout line
that is a JSON object becomes a row with one text column per (flattened)
key; any other line is stored in the raw_unparsable_line column.

Examples:
    logparsely noninteractive -s "kubectl logs -f api" -s "tail -f app.jsonl"
    logparsely noninteractive -d events.db -s "journalctl -f -o json"
"""

from __future__ import annotations

import argparse
import logging
import sys

from logparsely.commands import cmd_interactive, cmd_noninteractive, cmd_purge
from logparsely.errors import ConfigError

__all__ = [
    "main",
    "cmd_interactive",
    "cmd_noninteractive",
    "cmd_purge",
]


def _setup_logging(verbose: bool = False) -> None:
    """Configure the logparsely logger with stderr handler."""
    logger = logging.getLogger("logparsely")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    # Default level is WARNING (quiet), changed by --verbose
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logparsely",
        description="logparsely - capture command output into queryable DuckDB tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Global flags
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug messages")
    parser.add_argument(
        "--config",
        "-c",
        metavar="PATH",
        help="Config file (default: logparsely.yaml in current or parent directory)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # noninteractive
    p_nonint = subparsers.add_parser(
        "noninteractive", help="Ingest a fixed list of source commands"
    )
    p_nonint.add_argument(
        "--db-file-path",
        "-d",
        metavar="PATH",
        help="Database file (default: <logs_dir>/<uuid>-logparsely.db)",
    )
    p_nonint.add_argument(
        "--srcs",
        "-s",
        action="append",
        required=True,
        metavar="CMD",
        help="Shell command to ingest (repeatable)",
    )
    p_nonint.set_defaults(func=cmd_noninteractive)

    # interactive
    p_int = subparsers.add_parser("interactive", help="Add source commands at a prompt")
    p_int.add_argument(
        "--db-file-path",
        "-d",
        metavar="PATH",
        help="Database file (default: <logs_dir>/<uuid>-logparsely.db)",
    )
    p_int.set_defaults(func=cmd_interactive)

    # purge
    p_purge = subparsers.add_parser("purge", help="Remove generated database files")
    p_purge.set_defaults(func=cmd_purge)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
