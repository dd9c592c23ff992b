"""Tests for the logparsely CLI, configuration and purge."""

from __future__ import annotations

import argparse
import threading
from pathlib import Path

import duckdb
import pytest
from conftest import posix_only, wait_until

from logparsely.cli import build_parser, main
from logparsely.commands.core import (
    LogparselyConfig,
    get_db_path,
    load_config,
    noninteractive_mode,
)
from logparsely.commands.ingest_cmd import cmd_interactive, cmd_noninteractive
from logparsely.commands.management import purge
from logparsely.errors import ConfigError


def no_sources_running():
    return not any(t.name.startswith("logparsely-") for t in threading.enumerate())


def quit_when_sources_finish():
    """stdin stand-in that types 'q' once every ingestion thread is gone."""
    assert wait_until(no_sources_running)
    yield "q\n"


class TestGetDbPath:
    """Tests for get_db_path."""

    def test_explicit_path(self):
        assert get_db_path("valid/existing.db") == Path("valid/existing.db")

    def test_default_path(self):
        path = get_db_path(None)
        assert path.parent == Path("logs")
        assert path.name.endswith("-logparsely.db")

    def test_default_paths_unique(self):
        assert get_db_path(None) != get_db_path(None)

    def test_custom_logs_dir(self, temp_dir):
        assert get_db_path(None, temp_dir).parent == temp_dir


class TestConfig:
    """Tests for LogparselyConfig."""

    def test_defaults_when_missing(self, chdir_temp):
        config = LogparselyConfig.find()
        assert config.logs_dir == Path("logs")
        assert config.max_write_attempts == 3
        assert config.retry_delay_sec == 1.0

    def test_found_in_parent(self, chdir_temp):
        """logparsely.yaml is found from a subdirectory."""
        (chdir_temp / "logparsely.yaml").write_text("max_write_attempts: 5\nretry_delay_sec: 0\n")
        sub = chdir_temp / "a" / "b"
        sub.mkdir(parents=True)

        config = LogparselyConfig.find(sub)
        assert config.max_write_attempts == 5
        assert config.retry_delay_sec == 0.0

    def test_load_explicit(self, temp_dir):
        path = temp_dir / "custom.yaml"
        path.write_text("logs_dir: data\nlock_timeout_sec: 2\nunknown: 1\n")
        config = load_config(str(path))
        assert config.logs_dir == Path("data")
        assert config.lock_timeout_sec == 2.0

    def test_invalid_value(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("max_write_attempts: lots\n")
        with pytest.raises(ConfigError):
            LogparselyConfig.load(path)

    def test_not_a_mapping(self, temp_dir):
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            LogparselyConfig.load(path)

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError):
            load_config(str(temp_dir / "nope.yaml"))


class TestPurge:
    """Tests for purge."""

    def test_removes_generated_files_only(self, temp_dir):
        (temp_dir / "abc-logparsely.db").write_text("")
        (temp_dir / "abc-logparsely.db.wal").write_text("")
        (temp_dir / "keep.db").write_text("")
        (temp_dir / "dir-logparsely.db").mkdir()

        assert purge(temp_dir) == 2
        remaining = {p.name for p in temp_dir.iterdir()}
        assert remaining == {"keep.db", "dir-logparsely.db"}

    def test_missing_directory(self, temp_dir, capsys):
        assert purge(temp_dir / "missing") == 0
        assert "Failed to read directory" in capsys.readouterr().err

    def test_purge_command(self, chdir_temp, capsys):
        logs = chdir_temp / "logs"
        logs.mkdir()
        (logs / "x-logparsely.db").write_text("")

        main(["purge"])

        assert not (logs / "x-logparsely.db").exists()
        assert "Temp data files cleaned" in capsys.readouterr().out


class TestParser:
    """Tests for argument parsing."""

    def test_noninteractive_sources(self):
        args = build_parser().parse_args(["noninteractive", "-s", "echo 1", "-s", "echo 2"])
        assert args.srcs == ["echo 1", "echo 2"]
        assert args.db_file_path is None

    def test_noninteractive_requires_source(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["noninteractive"])

    def test_no_command_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    def test_bad_config_exits(self, temp_dir, capsys):
        bad = temp_dir / "bad.yaml"
        bad.write_text("retry_delay_sec: -1\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(bad), "purge"])
        assert exc_info.value.code == 1
        assert "retry_delay_sec" in capsys.readouterr().err


class TestNoninteractiveMode:
    """Tests for the ingestion orchestrator."""

    def test_failed_source_does_not_block_others(self, shared_connection, shared_state, capsys):
        config = LogparselyConfig(retry_delay_sec=0)
        started = noninteractive_mode(
            shared_connection, ["", "echo '{\"a\":1}'"], shared_state, config
        )
        assert started == 1
        assert wait_until(lambda: shared_state.outstanding == 0)
        captured = capsys.readouterr()
        assert "failed" in captured.err
        assert "added successfully" in captured.out


@posix_only
class TestIngestCommands:
    """End-to-end tests for the ingestion subcommands."""

    def test_noninteractive_writes_database(self, chdir_temp, monkeypatch, capsys):
        db = chdir_temp / "out" / "run.db"
        monkeypatch.setattr("sys.stdin", quit_when_sources_finish())
        args = argparse.Namespace(
            config=None,
            db_file_path=str(db),
            srcs=["printf '%s\\n' '{\"x\":1}' '{\"y\":2}' 'not json'"],
        )

        cmd_noninteractive(args)

        out = capsys.readouterr().out
        assert f"All data has been saved to {db}" in out
        conn = duckdb.connect(str(db))
        try:
            tables = conn.execute("SELECT table_name FROM information_schema.tables").fetchall()
            assert len(tables) == 1
            table = tables[0][0]
            rows = conn.execute(
                f'SELECT "x", "y", "raw_unparsable_line" FROM "{table}" ORDER BY rowid'
            ).fetchall()
        finally:
            conn.close()
        assert rows == [("1", None, None), (None, "2", None), (None, None, "not json")]

    def test_noninteractive_stops_long_running(self, chdir_temp, monkeypatch, capsys):
        """Quitting kills sources that never end on their own."""
        monkeypatch.setattr("sys.stdin", iter(["hello\n", "q\n"]))
        args = argparse.Namespace(config=None, db_file_path="run.db", srcs=["sleep 60"])

        cmd_noninteractive(args)

        assert "All data has been saved to run.db" in capsys.readouterr().out
        assert wait_until(no_sources_running)

    def test_interactive_adds_sources(self, chdir_temp, monkeypatch, capsys):
        answers = iter(["", "echo '{\"k\":\"v\"}'", None, "quit"])

        def fake_input(prompt=""):
            answer = next(answers)
            if answer is None:
                assert wait_until(no_sources_running)
                return ""
            return answer

        monkeypatch.setattr("builtins.input", fake_input)
        cmd_interactive(argparse.Namespace(config=None, db_file_path="inter.db"))

        conn = duckdb.connect("inter.db")
        try:
            table = conn.execute("SELECT table_name FROM information_schema.tables").fetchone()[0]
            assert conn.execute(f'SELECT "k" FROM "{table}"').fetchall() == [("v",)]
        finally:
            conn.close()
