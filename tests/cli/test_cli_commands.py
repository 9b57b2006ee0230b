"""CLI tests for the sync commands.

Commands are called directly with an engine over an in-process remote store.
Argument parsing and the process entry point are tested separately.
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from arkive_sync import cli
from arkive_sync.config import Config
from arkive_sync.engine import SyncEngine
from arkive_sync.main import create_parser
from arkive_sync.validation import ValidationError

from helpers import FlakyRemoteStore, make_receipt

SRC_DIR = Path(__file__).parent.parent.parent / "src"


def make_args(**kwargs: Any) -> argparse.Namespace:
    """Build a namespace with the global options filled in."""
    defaults = {"format": "text", "config_dir": None, "verbose": False}
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


def run_main(*argv: str) -> subprocess.CompletedProcess:
    """Run the entry point in a subprocess."""
    env = dict(os.environ)
    env["PYTHONPATH"] = str(SRC_DIR) + os.pathsep + env.get("PYTHONPATH", "")
    return subprocess.run(
        [sys.executable, "-m", "arkive_sync.main", *argv],
        capture_output=True,
        text=True,
        env=env,
    )


@pytest.mark.cli
class TestStatusCommand:
    """Test the status command."""

    def test_status_text(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test text status output."""
        engine.set_online(False)
        engine.enqueue("create", "receipts", make_receipt("R1"))

        assert cli.cmd_status(engine, make_args()) == 0
        out = capsys.readouterr().out
        assert f"Device ID: {engine.device_id}" in out
        assert "Online: False" in out
        assert "Pending Operations: 1" in out
        assert "Last Full Sync: never" in out

    def test_status_json(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test JSON status output after a full sync."""
        engine.perform_full_sync()

        assert cli.cmd_status(engine, make_args(format="json")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["online"] is True
        assert data["queue_length"] == 0
        assert data["last_full_sync"] == "2024-01-15T10:00:00.000Z"


@pytest.mark.cli
class TestEnqueueCommand:
    """Test the enqueue command."""

    def test_enqueue_and_send(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that an online enqueue is sent right away."""
        data = json.dumps({
            "id": "R1", "clientName": "Acme", "amount": 12.5,
            "date": "2024-01-02T09:00:00.000Z",
        })
        args = make_args(kind="create", collection="receipts", data=data)

        assert cli.cmd_enqueue(engine, args) == 0
        out = capsys.readouterr().out
        assert "Queued create receipts/R1" in out
        assert "Synced: 1, Failed: 0" in out
        assert remote.get("receipts/R1")["date"] == "2024-01-02T09:00:00.000Z"

    def test_enqueue_offline(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test that an offline enqueue stays queued."""
        engine.set_online(False)
        args = make_args(kind="delete", collection="receipts", data='{"id": "R1"}', format="json")

        assert cli.cmd_enqueue(engine, args) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["operation"]["kind"] == "delete"
        assert data["drain"]["skipped"] == "offline"
        assert engine.status().queue_length == 1

    def test_enqueue_bad_json(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test that malformed --data is rejected."""
        args = make_args(kind="create", collection="receipts", data="{not json")
        assert cli.cmd_enqueue(engine, args) == 1
        assert "not valid JSON" in capsys.readouterr().err

    def test_enqueue_not_an_object(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test that --data must be an object."""
        args = make_args(kind="create", collection="receipts", data="[1, 2]")
        assert cli.cmd_enqueue(engine, args) == 1
        assert engine.status().queue_length == 0

    def test_enqueue_invalid_id(self, engine: SyncEngine) -> None:
        """Test that invalid record ids raise ValidationError."""
        args = make_args(kind="create", collection="receipts", data='{"id": "a/b"}')
        with pytest.raises(ValidationError):
            cli.cmd_enqueue(engine, args)


@pytest.mark.cli
class TestQueueCommands:
    """Test the queue and dead-letters commands."""

    def test_queue_empty(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test listing an empty queue."""
        assert cli.cmd_queue(engine, make_args()) == 0
        assert "No pending operations." in capsys.readouterr().out

    def test_queue_lists_operations(
        self, engine: SyncEngine, capsys: pytest.CaptureFixture
    ) -> None:
        """Test listing pending operations in order."""
        engine.set_online(False)
        engine.enqueue("create", "receipts", make_receipt("R1"))
        engine.enqueue("update", "clients", {"id": "C1", "name": "Acme"})

        assert cli.cmd_queue(engine, make_args()) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 2
        assert "create" in lines[0] and "receipts/R1" in lines[0]
        assert "update" in lines[1] and "clients/C1" in lines[1]

    def test_queue_json(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test JSON queue output."""
        engine.set_online(False)
        engine.enqueue("create", "receipts", make_receipt("R1"))

        assert cli.cmd_queue(engine, make_args(format="json")) == 0
        data = json.loads(capsys.readouterr().out)
        assert [op["collection"] for op in data] == ["receipts"]

    def test_dead_letters_list_and_discard(
        self, engine: SyncEngine, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that rejected records are listed and can be discarded."""
        # Receipts without clientName, amount and date are never accepted
        engine.enqueue("create", "receipts", {"id": "R1"})
        engine.drain_queue()

        assert cli.cmd_dead_letters(engine, make_args(retry=False, discard=False)) == 0
        out = capsys.readouterr().out
        assert "receipts/R1" in out
        assert "required" in out

        assert cli.cmd_dead_letters(engine, make_args(retry=False, discard=True)) == 0
        assert "Discarded 1 operation(s)" in capsys.readouterr().out
        assert engine.dead_letters() == []

    def test_dead_letters_retry(
        self, engine: SyncEngine, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that retried dead letters go back into the queue."""
        engine.enqueue("create", "receipts", {"id": "R1"})
        engine.drain_queue()

        args = make_args(retry=True, discard=False, format="json")
        assert cli.cmd_dead_letters(engine, args) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["requeued"] == 1
        # Still invalid, so the drain dead-letters it again
        assert data["drain"]["dead_lettered"] == 1

    def test_no_dead_letters(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test listing when nothing failed."""
        assert cli.cmd_dead_letters(engine, make_args(retry=False, discard=False)) == 0
        assert "No dead letters." in capsys.readouterr().out


@pytest.mark.cli
class TestSyncCommand:
    """Test the sync command."""

    def test_sync_success(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test a successful full sync."""
        engine.enqueue("create", "receipts", make_receipt("R1"))

        assert cli.cmd_sync(engine, make_args()) == 0
        assert "Sync completed: 1 operation(s) sent" in capsys.readouterr().out
        assert remote.get(f"sync_metadata/{engine.device_id}/lastSync") is not None

    def test_sync_offline(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test that sync fails when offline."""
        engine.set_online(False)
        assert cli.cmd_sync(engine, make_args(format="json")) == 1
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is False
        assert "offline" in data["error"]

    def test_sync_failure(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that a failed operation fails the sync."""
        engine.enqueue("create", "receipts", make_receipt("R1"))
        remote.fail_writes = 1

        assert cli.cmd_sync(engine, make_args()) == 1
        assert "Sync failed" in capsys.readouterr().err
        assert remote.get("sync_metadata") is None


@pytest.mark.cli
class TestFetchCommand:
    """Test the fetch command."""

    def test_fetch(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test printing a remote collection."""
        remote.set("clients/C1", {"id": "C1", "name": "Acme"})
        assert cli.cmd_fetch(engine, make_args(collection="clients")) == 0
        out = capsys.readouterr().out
        assert "ID: C1" in out
        assert "name: Acme" in out

    def test_fetch_json(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test JSON fetch output keeps wire timestamps."""
        remote.set("receipts/R1", {
            "id": "R1", "clientName": "Acme", "amount": 1, "date": "2024-01-02T09:00:00.000Z",
        })
        assert cli.cmd_fetch(engine, make_args(collection="receipts", format="json")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data[0]["date"] == "2024-01-02T09:00:00.000Z"

    def test_fetch_empty(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test fetching a collection that does not exist."""
        assert cli.cmd_fetch(engine, make_args(collection="expenses")) == 0
        assert "No expenses found." in capsys.readouterr().out

    def test_fetch_offline(self, engine: SyncEngine, capsys: pytest.CaptureFixture) -> None:
        """Test that fetching offline fails."""
        engine.set_online(False)
        assert cli.cmd_fetch(engine, make_args(collection="clients")) == 1
        assert "offline" in capsys.readouterr().err


@pytest.mark.cli
class TestWatchAndReset:
    """Test the watch and reset commands."""

    def test_watch_prints_snapshot(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that watch prints the current collection."""
        remote.set("clients/C1", {"id": "C1", "name": "Acme"})
        args = make_args(collection="clients", seconds=0.1)

        assert cli.cmd_watch(engine, args) == 0
        out = capsys.readouterr().out
        assert "--- clients: 1 record(s)" in out
        assert remote.listener_count() == 0

    def test_watch_shows_own_records(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that records written by this device are printed too."""
        remote.set("clients/C1", {"id": "C1", "name": "Mine", "originDevice": engine.device_id})
        remote.set("clients/C2", {"id": "C2", "name": "Theirs", "originDevice": "other"})
        args = make_args(collection="clients", seconds=0.1)

        assert cli.cmd_watch(engine, args) == 0
        out = capsys.readouterr().out
        assert "--- clients: 2 record(s)" in out
        assert "name: Mine" in out

    def test_reset_requires_confirmation(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that reset refuses to run without --yes."""
        remote.set("clients/C1", {"id": "C1", "name": "Acme"})
        assert cli.cmd_reset(engine, make_args(yes=False, local_only=False)) == 1
        assert "--yes" in capsys.readouterr().err
        assert remote.get("clients/C1") is not None

    def test_reset(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that reset clears both sides."""
        remote.set("clients/C1", {"id": "C1", "name": "Acme"})
        engine.enqueue("create", "receipts", make_receipt("R1"))

        assert cli.cmd_reset(engine, make_args(yes=True, local_only=False)) == 0
        out = capsys.readouterr().out
        assert "Remote store cleared." in out
        assert remote.get("") is None
        assert engine.pending_operations() == []

    def test_reset_local_only(
        self, engine: SyncEngine, remote: FlakyRemoteStore, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that --local-only keeps the remote store."""
        remote.set("clients/C1", {"id": "C1", "name": "Acme"})
        assert cli.cmd_reset(engine, make_args(yes=True, local_only=True)) == 0
        assert remote.get("clients/C1") is not None


@pytest.mark.cli
class TestRun:
    """Test command dispatch through cli.run()."""

    def test_run_without_remote(self, test_config_dir: Path, capsys: pytest.CaptureFixture) -> None:
        """Test that remote commands fail cleanly with no remote store configured."""
        assert cli.run(test_config_dir, make_args(command="sync")) == 1
        assert "No remote store configured" in capsys.readouterr().err

    def test_local_commands_without_remote(
        self, test_config_dir: Path, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that status, queue and dead-letters only need local state."""
        assert cli.run(test_config_dir, make_args(command="status", format="json")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["online"] is False
        assert data["queue_length"] == 0

        assert cli.run(test_config_dir, make_args(command="queue")) == 0
        assert "No pending operations." in capsys.readouterr().out

        args = make_args(command="dead-letters", retry=False, discard=False)
        assert cli.run(test_config_dir, args) == 0
        assert "No dead letters." in capsys.readouterr().out

    def test_run_unknown_command(self, test_config_dir: Path, capsys: pytest.CaptureFixture) -> None:
        """Test that unknown commands are rejected."""
        assert cli.run(test_config_dir, make_args(command="frobnicate")) == 1
        assert "Unknown command" in capsys.readouterr().err

    def test_run_unreachable_remote(
        self, test_config_dir: Path, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that an unreachable store leaves the device offline."""
        config = Config(config_dir=test_config_dir)
        config.set_sync_value("remote_url", "http://127.0.0.1:1")
        config.set_sync_value("request_timeout", 1)

        assert cli.run(test_config_dir, make_args(command="status", format="json")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["online"] is False


@pytest.mark.cli
class TestArgumentParsing:
    """Test parser construction and the entry point."""

    def test_parse_enqueue(self) -> None:
        """Test parsing enqueue with global options."""
        parser = create_parser()
        args = parser.parse_args(
            ["--format", "json", "enqueue", "update", "receipts", "--data", '{"id": "R1"}']
        )
        assert args.command == "enqueue"
        assert args.kind == "update"
        assert args.collection == "receipts"
        assert args.format == "json"

    def test_parse_invalid_kind(self) -> None:
        """Test that unknown mutation kinds are rejected."""
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["enqueue", "upsert", "receipts", "--data", "{}"])

    def test_dead_letters_flags_exclusive(self) -> None:
        """Test that --retry and --discard cannot be combined."""
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["dead-letters", "--retry", "--discard"])

    def test_parse_serve(self, tmp_path: Path) -> None:
        """Test parsing serve options."""
        parser = create_parser()
        args = parser.parse_args(["-d", str(tmp_path), "serve", "--port", "9000"])
        assert args.command == "serve"
        assert args.port == 9000
        assert args.host is None
        assert args.config_dir == tmp_path

    def test_no_command_shows_help(self) -> None:
        """Test that running without a command shows help."""
        result = run_main()
        assert result.returncode == 1
        assert "usage:" in result.stdout.lower()
        assert "enqueue" in result.stdout
        assert "serve" in result.stdout

    def test_help_flag(self) -> None:
        """Test --help flag."""
        result = run_main("--help")
        assert result.returncode == 0
        assert "--config-dir" in result.stdout
