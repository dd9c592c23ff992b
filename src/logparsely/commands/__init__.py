"""
logparsely commands module.

This module provides the subcommand implementations for the logparsely CLI.
"""

from logparsely.commands.ingest_cmd import cmd_interactive, cmd_noninteractive
from logparsely.commands.management import cmd_purge

__all__ = [
    # Ingestion
    "cmd_noninteractive",
    "cmd_interactive",
    # Management
    "cmd_purge",
]
