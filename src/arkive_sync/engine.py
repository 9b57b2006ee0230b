"""Sync engine: the single component applications talk to.

The engine owns its collaborators, all injected at construction so tests can
swap in fakes:
- LocalStorage for the device id, the queue and sync bookkeeping
- a RemoteStore for the shared data
- a clock for every timestamp it writes

Typical use::

    engine = SyncEngine.from_config(Config())
    engine.start()
    view = engine.open_view("receipts")
    engine.enqueue("create", "receipts", receipt)
    print(engine.status().to_dict())
    engine.stop()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .connectivity import ConnectivityMonitor
from .device import get_or_create_device_id
from .operation_queue import DeadLetter, OperationQueue
from .operations import OperationKind, SyncOperation, create_operation
from .processor import SKIP_BUSY, DrainResult, SyncProcessor
from .reconcile import CollectionView
from .records import deserialize_record, get_schema, snapshot_records
from .remote import HttpRemoteStore, OfflineError, RemoteError, RemoteStore, SyncError
from .storage import LocalStorage, StorageError
from .subscriber import RESUBSCRIBE_REPLACE, RealtimeSubscriber
from .timestamp_utils import parse_iso, to_iso, utc_now
from .validation import validate_collection_name

logger = logging.getLogger(__name__)

__all__ = ["SyncEngine", "SyncStatus", "heartbeat_path"]

LAST_SYNC_KEY = "last_sync_time"


def heartbeat_path(device_id: str) -> str:
    """Remote path of a device's last full sync time."""
    return f"sync_metadata/{device_id}/lastSync"


@dataclass
class SyncStatus:
    """Aggregate sync state for status displays."""

    online: bool
    queue_length: int
    last_full_sync: Optional[datetime]
    device_id: str
    in_progress: bool = False
    retry_attempts: int = 0
    dead_letters: int = 0
    queue_corrupted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "online": self.online,
            "queue_length": self.queue_length,
            "last_full_sync": to_iso(self.last_full_sync) if self.last_full_sync else None,
            "device_id": self.device_id,
            "in_progress": self.in_progress,
            "retry_attempts": self.retry_attempts,
            "dead_letters": self.dead_letters,
            "queue_corrupted": self.queue_corrupted,
        }


class SyncEngine:
    """Offline-first sync of local mutations with a shared remote store."""

    def __init__(
        self,
        storage: LocalStorage,
        remote: RemoteStore,
        clock: Optional[Callable[[], datetime]] = None,
        max_retries: int = 3,
        max_operation_attempts: Optional[int] = 10,
        drain_interval: float = 10.0,
        resubscribe: str = RESUBSCRIBE_REPLACE,
        sort_field: Optional[str] = None,
        probe: bool = True,
        initially_online: bool = True,
    ) -> None:
        """Initialize the engine and restore persisted state.

        Args:
            storage: Local durable storage
            remote: Remote shared store
            clock: Time source (defaults to UTC now)
            max_retries: Shared failure budget between online transitions
            max_operation_attempts: Failures before one operation is dead-lettered
            drain_interval: Seconds between periodic drain attempts
            resubscribe: Behavior of subscribe() for a subscribed collection
            sort_field: Field ordering views (defaults to each collection's own)
            probe: Probe the remote store for connectivity on each tick
            initially_online: Connectivity assumed before the first probe
        """
        self.storage = storage
        self.remote = remote
        self._clock = clock or utc_now
        self.sort_field = sort_field
        self._owns_storage = False
        self._views: Dict[str, CollectionView] = {}

        self.device_id = get_or_create_device_id(storage)

        self.queue = OperationQueue(storage, clock=self._clock)
        self.queue.load()

        self.monitor = ConnectivityMonitor(
            probe=remote.is_connected if probe else None,
            interval=drain_interval,
            initially_online=initially_online,
        )
        self.processor = SyncProcessor(
            self.queue,
            remote,
            self.device_id,
            is_online=lambda: self.monitor.online,
            clock=self._clock,
            max_retries=max_retries,
            max_operation_attempts=max_operation_attempts,
        )
        self.subscriber = RealtimeSubscriber(remote, self.device_id, resubscribe)

        self.monitor.on_online(self._handle_online)
        self.monitor.on_tick(self._handle_tick)

    @classmethod
    def from_config(
        cls, config: Config, remote: Optional[RemoteStore] = None, **kwargs: Any
    ) -> "SyncEngine":
        """Build an engine from a Config.

        Args:
            config: Loaded configuration
            remote: Remote store to use instead of the configured server
            **kwargs: Overrides for SyncEngine arguments

        Raises:
            SyncError: If no remote store is given and none is configured
        """
        sync = config.get_sync_config()
        if remote is None:
            url = sync.get("remote_url")
            if not url:
                raise SyncError(
                    "No remote store configured (set sync.remote_url in "
                    f"{config.config_file})"
                )
            remote = HttpRemoteStore(
                url,
                timeout=float(sync["request_timeout"]),
                poll_interval=float(sync["poll_interval_seconds"]),
            )

        storage = LocalStorage(config.get_database_file())
        options: Dict[str, Any] = {
            "max_retries": int(sync["max_retries"]),
            "max_operation_attempts": sync.get("max_operation_attempts"),
            "drain_interval": float(sync["drain_interval_seconds"]),
            "resubscribe": sync["resubscribe"],
            "sort_field": sync.get("sort_field"),
        }
        options.update(kwargs)
        engine = cls(storage, remote, **options)
        engine._owns_storage = True
        return engine

    # ===== Lifecycle =====

    def start(self) -> None:
        """Probe connectivity and start periodic draining."""
        self.monitor.check_now()
        self.monitor.start()
        if self.monitor.online and len(self.queue):
            self.monitor.request_drain()

    def stop(self) -> None:
        """Stop periodic draining and cancel every subscription."""
        self.monitor.stop()
        self.subscriber.unsubscribe_all()

    def close(self) -> None:
        """Stop the engine and close storage it opened itself."""
        self.stop()
        if self._owns_storage:
            self.storage.close()

    def __enter__(self) -> "SyncEngine":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ===== Connectivity =====

    @property
    def online(self) -> bool:
        return self.monitor.online

    def set_online(self, online: bool) -> None:
        """Apply a connectivity signal from the host."""
        self.monitor.set_online(online)

    def check_connection(self) -> bool:
        """Check that the remote store is actually reachable."""
        if not self.monitor.online:
            return False
        try:
            return bool(self.remote.is_connected())
        except Exception as e:
            logger.warning(f"Remote connection check failed: {e}")
            return False

    def _handle_online(self) -> None:
        self.processor.reset_retries()
        self.drain_queue()

    def _handle_tick(self) -> None:
        if (
            len(self.queue)
            and not self.processor.in_progress
            and not self.processor.retries_exhausted
        ):
            self.drain_queue()

    # ===== Mutations =====

    def enqueue(self, kind: Any, collection: str, payload: Dict[str, Any]) -> SyncOperation:
        """Queue a local mutation for transmission.

        Returns as soon as the operation is persisted; transmission happens
        on the next drain pass.

        Args:
            kind: "create", "update" or "delete" (or an OperationKind)
            collection: Collection of the record
            payload: The record as committed locally (must contain ``id``)

        Returns:
            The queued operation

        Raises:
            ValidationError: If the collection, kind or record id is invalid
        """
        op = create_operation(kind, collection, payload, self.device_id, clock=self._clock)
        self.enqueue_operation(op)
        return op

    def enqueue_operation(self, op: SyncOperation) -> None:
        """Queue an already built operation."""
        self.queue.enqueue(op)
        self._show_local(op)
        if self.monitor.online and not self.processor.in_progress:
            self.monitor.request_drain()

    def _show_local(self, op: SyncOperation) -> None:
        view = self._views.get(op.collection)
        if view is None:
            return
        if op.kind is OperationKind.CREATE:
            view.apply_local(op.payload)
        elif op.kind is OperationKind.UPDATE:
            view.replace_local(op.payload)
        else:
            view.remove(op.payload.get("id"))

    def drain_queue(self) -> DrainResult:
        """Run one drain pass now (no-op when not allowed)."""
        return self.processor.drain_queue()

    def pending_operations(self) -> List[SyncOperation]:
        """Operations not yet confirmed by the remote store."""
        return list(self.queue.snapshot())

    def dead_letters(self) -> List[DeadLetter]:
        return list(self.queue.dead_letters())

    def retry_dead_letters(self) -> int:
        """Move dead-lettered operations back into the queue."""
        count = self.queue.retry_dead_letters()
        if count and self.monitor.online:
            self.monitor.request_drain()
        return count

    def discard_dead_letters(self) -> int:
        return self.queue.discard_dead_letters()

    # ===== Remote data =====

    def subscribe(self, collection: str, on_update: Callable[[List[Dict[str, Any]]], None]) -> bool:
        """Receive remote snapshots of a collection (own writes filtered out)."""
        return self.subscriber.subscribe(collection, on_update)

    def unsubscribe(self, collection: str) -> bool:
        self._views.pop(collection, None)
        return self.subscriber.unsubscribe(collection)

    def unsubscribe_all(self) -> int:
        self._views.clear()
        return self.subscriber.unsubscribe_all()

    def open_view(
        self,
        collection: str,
        on_change: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
        sort_field: Optional[str] = None,
        initial: Optional[List[Dict[str, Any]]] = None,
    ) -> CollectionView:
        """Subscribe to a collection and keep a reconciled visible list.

        The view starts from ``initial`` (the host's local copy, including
        records this device wrote, which remote snapshots never echo back)
        with pending operations replayed on top. Local mutations enqueued
        through this engine show up in the view at once; remote snapshots
        are merged in with the remote copy winning.
        """
        validate_collection_name(collection)
        view = CollectionView(
            collection,
            sort_field=sort_field or self.sort_field or get_schema(collection).sort_field,
            on_change=on_change,
            initial=initial,
        )
        self._views[collection] = view
        for op in self.queue.snapshot():
            if op.collection == collection:
                self._show_local(op)
        self.subscriber.subscribe(collection, view.apply_remote)
        return view

    def fetch_collection(self, collection: str) -> List[Dict[str, Any]]:
        """Read a whole collection once.

        Raises:
            OfflineError: If the device is offline
            RemoteError: If the read fails
        """
        validate_collection_name(collection)
        if not self.monitor.online:
            raise OfflineError(f"Cannot fetch {collection} - offline")
        try:
            snapshot = self.remote.get(collection)
        except RemoteError as e:
            logger.error(f"Error fetching {collection} from remote store: {e}")
            raise
        return [deserialize_record(r) for r in snapshot_records(snapshot)]

    # ===== Status =====

    def last_full_sync(self) -> Optional[datetime]:
        """Time of the last successful full sync, if any."""
        try:
            raw = self.storage.get_item(LAST_SYNC_KEY)
        except StorageError as e:
            logger.warning(f"Cannot read last sync time: {e}")
            return None
        if not raw:
            return None
        try:
            return parse_iso(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable last sync time: {raw!r}")
            return None

    def status(self) -> SyncStatus:
        """Aggregate state for status displays."""
        return SyncStatus(
            online=self.monitor.online,
            queue_length=self.queue.pending_count(),
            last_full_sync=self.last_full_sync(),
            device_id=self.device_id,
            in_progress=self.processor.in_progress,
            retry_attempts=self.processor.retry_attempts,
            dead_letters=len(self.queue.dead_letters()),
            queue_corrupted=self.queue.corrupted,
        )

    def perform_full_sync(self) -> DrainResult:
        """Drain the queue now and record a heartbeat.

        A manual full sync also resumes draining after the retry budget was
        used up. Operations synced before a failure stay synced.

        Returns:
            Result of the drain pass

        Raises:
            OfflineError: If the device is offline
            SyncError: If a drain is already running or an operation failed
            RemoteError: If the heartbeat cannot be written
        """
        if not self.monitor.online:
            logger.warning("Cannot perform full sync - offline")
            raise OfflineError("Cannot perform full sync - offline")

        logger.info("Starting full sync")
        self.processor.reset_retries()
        result = self.processor.drain_queue()
        if result.skipped == SKIP_BUSY:
            raise SyncError("Full sync failed: a drain pass is already in progress")
        if result.failed or result.dead_lettered:
            logger.error(f"Full sync failed: {'; '.join(result.errors)}")
            raise SyncError(
                f"Full sync failed: {result.failed + result.dead_lettered} "
                f"operations did not sync: {'; '.join(result.errors)}"
            )

        now = to_iso(self._clock())
        self.remote.set(heartbeat_path(self.device_id), now)
        self.storage.set_item(LAST_SYNC_KEY, now)
        logger.info("Full sync completed")
        return result

    # ===== Reset =====

    def reset(self, remote: bool = True, local: bool = True) -> None:
        """Delete all synced data.

        Args:
            remote: Delete everything in the remote store
            local: Clear local storage (queue, dead letters, device id,
                last sync time)

        Raises:
            OfflineError: If a remote reset is requested while offline
        """
        if remote:
            if not self.monitor.online:
                raise OfflineError("Cannot reset remote store - offline")
            self.remote.remove("")
            logger.warning("All remote store data deleted")
        if local:
            self.unsubscribe_all()
            self.queue.reset()
            self.storage.clear()
            logger.warning("Local sync storage cleared")
