#!/usr/bin/env python3
"""Command-line interface for arkive-sync.

This module provides one-shot commands for inspecting and driving the sync
engine of this device.

Commands:
    status                          Show connectivity, queue and last sync
    enqueue <kind> <collection>     Queue a create, update or delete
    queue                           List operations awaiting transmission
    dead-letters [--retry|--discard] List, re-queue or drop failed operations
    sync                            Drain the queue now and record a heartbeat
    fetch <collection>              Print the remote copy of a collection
    watch <collection>              Print the collection on every remote change
    reset --yes                     Delete synced data remotely and locally
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config
from .engine import SyncEngine
from .operations import SyncOperation
from .records import deserialize_record, serialize_record
from .remote import MemoryRemoteStore, RemoteStore, SyncError
from .storage import StorageError
from .timestamp_utils import to_iso
from .validation import ValidationError


def format_record(record: Dict[str, Any], format_type: str = "text") -> str:
    """Format a record for display.

    Args:
        record: Record dict (temporal fields may be datetimes)
        format_type: Output format (text or json)

    Returns:
        Formatted string
    """
    wire = serialize_record(record)
    if format_type == "json":
        return json.dumps(wire, indent=2)

    lines = [f"ID: {wire.get('id')}"]
    for key in sorted(wire):
        if key != "id":
            lines.append(f"  {key}: {wire[key]}")
    return "\n".join(lines)


def format_operation(op: SyncOperation, attempts: int = 0) -> str:
    """Format a queued operation as a single line."""
    line = f"{to_iso(op.created_at)}  {op.kind.value:<6}  {op.path}"
    if attempts:
        line += f"  (failed {attempts}x)"
    return line


def cmd_status(engine: SyncEngine, args: argparse.Namespace) -> int:
    """Show sync status of this device.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    status = engine.status()

    if args.format == "json":
        print(json.dumps(status.to_dict(), indent=2))
        return 0

    last_sync = to_iso(status.last_full_sync) if status.last_full_sync else "never"
    print(f"Device ID: {status.device_id}")
    print(f"Online: {status.online}")
    print(f"Pending Operations: {status.queue_length}")
    print(f"Last Full Sync: {last_sync}")
    if status.retry_attempts:
        print(f"Failed Attempts: {status.retry_attempts}")
    if status.dead_letters:
        print(f"\nDead Letters: {status.dead_letters} (see 'dead-letters')")
    if status.queue_corrupted:
        print("\nWarning: the persisted queue was corrupt and has been reset")
    return 0


def cmd_enqueue(engine: SyncEngine, args: argparse.Namespace) -> int:
    """Queue a local mutation and try to send it right away.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments (kind, collection, data)

    Returns:
        Exit code (0 for success, 1 for invalid input)
    """
    try:
        payload = json.loads(args.data)
    except ValueError as e:
        print(f"Error: --data is not valid JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(payload, dict):
        print("Error: --data must be a JSON object", file=sys.stderr)
        return 1

    op = engine.enqueue(args.kind, args.collection, deserialize_record(payload))
    result = engine.drain_queue()

    if args.format == "json":
        print(json.dumps({"operation": op.to_dict(), "drain": result.to_dict()}, indent=2))
    else:
        print(f"Queued {op.kind.value} {op.path}")
        if result.ran:
            print(f"Synced: {result.synced}, Failed: {result.failed}")
        else:
            print(f"Not sent yet ({result.skipped})")
    return 0


def cmd_queue(engine: SyncEngine, args: argparse.Namespace) -> int:
    """List operations awaiting transmission.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    ops = engine.pending_operations()

    if args.format == "json":
        print(json.dumps([op.to_dict() for op in ops], indent=2))
        return 0

    if not ops:
        print("No pending operations.")
        return 0
    for op in ops:
        print(format_operation(op, engine.queue.attempts(op.id)))
    return 0


def cmd_dead_letters(engine: SyncEngine, args: argparse.Namespace) -> int:
    """List, retry or discard dead-lettered operations.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments (retry, discard)

    Returns:
        Exit code (0 for success)
    """
    if args.retry:
        count = engine.retry_dead_letters()
        result = engine.drain_queue()
        if args.format == "json":
            print(json.dumps({"requeued": count, "drain": result.to_dict()}, indent=2))
        else:
            print(f"Re-queued {count} operation(s)")
        return 0

    if args.discard:
        count = engine.discard_dead_letters()
        if args.format == "json":
            print(json.dumps({"discarded": count}))
        else:
            print(f"Discarded {count} operation(s)")
        return 0

    entries = engine.dead_letters()
    if args.format == "json":
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return 0

    if not entries:
        print("No dead letters.")
        return 0
    for entry in entries:
        print(format_operation(entry.operation, entry.attempts))
        print(f"    {entry.error}")
    return 0


def cmd_sync(engine: SyncEngine, args: argparse.Namespace) -> int:
    """Drain the queue now and record a heartbeat.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for any failures)
    """
    try:
        result = engine.perform_full_sync()
    except SyncError as e:
        if args.format == "json":
            print(json.dumps({"success": False, "error": str(e)}, indent=2))
        else:
            print(f"Sync failed: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        output = result.to_dict()
        output["success"] = True
        print(json.dumps(output, indent=2))
    else:
        print(f"Sync completed: {result.synced} operation(s) sent")
    return 0


def cmd_fetch(engine: SyncEngine, args: argparse.Namespace) -> int:
    """Print the remote copy of a collection.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments (collection)

    Returns:
        Exit code (0 for success, 1 if the read failed)
    """
    try:
        records = engine.fetch_collection(args.collection)
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps([serialize_record(r) for r in records], indent=2))
        return 0

    if not records:
        print(f"No {args.collection} found.")
        return 0
    for record in records:
        print(format_record(record))
        print()
    return 0


def cmd_watch(engine: SyncEngine, args: argparse.Namespace) -> int:
    """Print a collection on every remote change until interrupted.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments (collection, seconds)

    Returns:
        Exit code (0 for success)
    """
    def show(records: List[Dict[str, Any]]) -> None:
        if args.format == "json":
            print(json.dumps([serialize_record(r) for r in records]), flush=True)
        else:
            print(f"--- {args.collection}: {len(records)} record(s)", flush=True)
            for record in records:
                print(format_record(record), flush=True)

    engine.start()
    # Snapshots skip this device's own records, so start from a full read
    initial: List[Dict[str, Any]] = []
    if engine.online:
        try:
            initial = engine.fetch_collection(args.collection)
        except SyncError as e:
            print(f"Warning: could not read {args.collection}: {e}", file=sys.stderr)
    engine.open_view(args.collection, on_change=show, initial=initial)
    try:
        if args.seconds is not None:
            time.sleep(args.seconds)
        else:
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
    return 0


def cmd_reset(engine: SyncEngine, args: argparse.Namespace) -> int:
    """Delete all synced data.

    Args:
        engine: Sync engine
        args: Parsed command-line arguments (yes, local_only)

    Returns:
        Exit code (0 for success, 1 if not confirmed or offline)
    """
    if not args.yes:
        print("Error: reset deletes all synced data. Pass --yes to confirm.", file=sys.stderr)
        return 1

    try:
        engine.reset(remote=not args.local_only, local=True)
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps({"reset": True, "remote": not args.local_only}))
    else:
        print("Local sync state cleared.")
        if not args.local_only:
            print("Remote store cleared.")
    return 0


# Commands that only read or rearrange local state
LOCAL_COMMANDS = ("status", "queue", "dead-letters")


COMMANDS = {
    "status": cmd_status,
    "enqueue": cmd_enqueue,
    "queue": cmd_queue,
    "dead-letters": cmd_dead_letters,
    "sync": cmd_sync,
    "fetch": cmd_fetch,
    "watch": cmd_watch,
    "reset": cmd_reset,
}


def add_cli_subparsers(subparsers: Any) -> None:
    """Add the sync commands to the main parser.

    Args:
        subparsers: Parent subparsers object to add commands to
    """
    subparsers.add_parser("status", help="Show sync status and device info")

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a local mutation")
    enqueue_parser.add_argument(
        "kind",
        choices=["create", "update", "delete"],
        help="Kind of mutation",
    )
    enqueue_parser.add_argument("collection", type=str, help="Collection name (e.g. receipts)")
    enqueue_parser.add_argument(
        "--data",
        type=str,
        required=True,
        help="Record as a JSON object (must contain 'id')",
    )

    subparsers.add_parser("queue", help="List operations awaiting transmission")

    dead_parser = subparsers.add_parser("dead-letters", help="Show operations that kept failing")
    dead_group = dead_parser.add_mutually_exclusive_group()
    dead_group.add_argument(
        "--retry",
        action="store_true",
        help="Move dead letters back into the queue",
    )
    dead_group.add_argument(
        "--discard",
        action="store_true",
        help="Delete dead letters",
    )

    subparsers.add_parser("sync", help="Drain the queue now and record a heartbeat")

    fetch_parser = subparsers.add_parser("fetch", help="Print the remote copy of a collection")
    fetch_parser.add_argument("collection", type=str, help="Collection name")

    watch_parser = subparsers.add_parser("watch", help="Print a collection on every remote change")
    watch_parser.add_argument("collection", type=str, help="Collection name")
    watch_parser.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Stop after this many seconds (default: until Ctrl+C)",
    )

    reset_parser = subparsers.add_parser("reset", help="Delete all synced data")
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm deletion",
    )
    reset_parser.add_argument(
        "--local-only",
        action="store_true",
        help="Only clear local sync state, keep the remote store",
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run a sync command with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have command attribute)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    command = COMMANDS.get(getattr(args, "command", None) or "")
    if command is None:
        print(f"Error: Unknown command '{args.command}'", file=sys.stderr)
        return 1

    config = Config(config_dir=config_dir)
    remote: Optional[RemoteStore] = None
    if args.command in LOCAL_COMMANDS and not config.get_remote_url():
        # No store to talk to: run against a disconnected one so the device stays offline
        remote = MemoryRemoteStore()
        remote.connected = False
    try:
        engine = SyncEngine.from_config(config, remote=remote)
    except (SyncError, StorageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        engine.monitor.check_now()
        return command(engine, args)
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    except (SyncError, StorageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        engine.close()
