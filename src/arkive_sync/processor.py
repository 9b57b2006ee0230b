"""Sync processor: drains the operation queue into the remote store.

One drain pass:
1. takes an atomic snapshot of the queue (emptying the live queue)
2. applies each operation in order; creates and updates upsert the full
   record at ``{collection}/{id}``, deletes remove it
3. re-appends failed operations at the tail and keeps going
4. persists the resulting queue

Passes never overlap. A shared retry counter, reset on every online
transition, pauses automatic draining once ``max_retries`` failures have
accumulated. Each operation also carries its own attempt count so one
permanently failing record ends up in the dead-letter list instead of being
retried forever.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .operation_queue import OperationQueue
from .operations import OperationKind, SyncOperation
from .records import LAST_MODIFIED, ORIGIN_DEVICE, serialize_record, validate_record
from .remote import RemoteStore
from .timestamp_utils import to_iso, utc_now
from .validation import ValidationError

logger = logging.getLogger(__name__)

__all__ = ["DrainResult", "SyncProcessor"]

SKIP_OFFLINE = "offline"
SKIP_EMPTY = "empty"
SKIP_BUSY = "in_progress"
SKIP_EXHAUSTED = "retries_exhausted"


@dataclass
class DrainResult:
    """Outcome of one drain_queue() call."""

    attempted: int = 0
    synced: int = 0
    failed: int = 0
    dead_lettered: int = 0
    skipped: Optional[str] = None  # Reason the pass did not run
    errors: List[str] = field(default_factory=list)

    @property
    def ran(self) -> bool:
        return self.skipped is None

    @property
    def success(self) -> bool:
        return self.ran and self.failed == 0 and self.dead_lettered == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "dead_lettered": self.dead_lettered,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class SyncProcessor:
    """Applies queued operations to the remote store."""

    def __init__(
        self,
        queue: OperationQueue,
        remote: RemoteStore,
        device_id: str,
        is_online: Callable[[], bool],
        clock: Optional[Callable[[], datetime]] = None,
        max_retries: int = 3,
        max_operation_attempts: Optional[int] = 10,
    ) -> None:
        """Initialize the processor.

        Args:
            queue: Queue to drain
            remote: Remote store to write to
            device_id: Id stamped into ``originDevice``
            is_online: Callable reporting current connectivity
            clock: Time source for ``lastModified``
            max_retries: Shared failure budget between online transitions
            max_operation_attempts: Failures after which one operation is
                dead-lettered (None disables the limit)
        """
        self.queue = queue
        self.remote = remote
        self.device_id = device_id
        self._is_online = is_online
        self._clock = clock or utc_now
        self.max_retries = max_retries
        self.max_operation_attempts = max_operation_attempts
        self._busy = threading.Lock()
        self._counter_lock = threading.Lock()
        self._retry_attempts = 0

    @property
    def in_progress(self) -> bool:
        """True while a drain pass is running."""
        return self._busy.locked()

    @property
    def retry_attempts(self) -> int:
        with self._counter_lock:
            return self._retry_attempts

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_attempts >= self.max_retries

    def reset_retries(self) -> None:
        """Reset the shared retry counter (after going online or on request)."""
        with self._counter_lock:
            if self._retry_attempts:
                logger.info(f"Resetting sync retry counter (was {self._retry_attempts})")
            self._retry_attempts = 0

    def drain_queue(self) -> DrainResult:
        """Run one drain pass if allowed.

        Safe to call repeatedly and from any thread: it does nothing when
        offline, when the queue is empty, when the retry budget is used up,
        or when another pass is already running.
        """
        if not self._is_online():
            return DrainResult(skipped=SKIP_OFFLINE)
        if len(self.queue) == 0:
            return DrainResult(skipped=SKIP_EMPTY)
        if self.retries_exhausted:
            logger.debug("Retry budget exhausted, not draining")
            return DrainResult(skipped=SKIP_EXHAUSTED)
        if not self._busy.acquire(blocking=False):
            return DrainResult(skipped=SKIP_BUSY)

        try:
            batch = self.queue.drain()
            result = DrainResult(attempted=len(batch))
            if batch:
                logger.info(f"Draining {len(batch)} queued operations")
            try:
                for op in batch:
                    self._process(op, result)
            finally:
                self.queue.persist()
            if batch:
                logger.info(
                    f"Drain pass complete: synced={result.synced}, failed={result.failed}, "
                    f"dead_lettered={result.dead_lettered}"
                )
            return result
        finally:
            self._busy.release()

    def _process(self, op: SyncOperation, result: DrainResult) -> None:
        try:
            self.apply(op)
        except ValidationError as e:
            # The record can never be accepted; retrying would only block others
            self.queue.dead_letter(op, str(e))
            result.dead_lettered += 1
            result.errors.append(f"{op.kind.value} {op.collection}: {e}")
        except Exception as e:
            with self._counter_lock:
                self._retry_attempts += 1
            attempts = self.queue.record_failure(op)
            result.failed += 1
            result.errors.append(f"{op.kind.value} {op.collection}: {e}")
            logger.error(
                f"Failed to sync {op.kind.value} operation for {op.collection} "
                f"(attempt {attempts}): {e}"
            )
            if self.max_operation_attempts and attempts >= self.max_operation_attempts:
                self.queue.dead_letter(op, str(e))
                result.dead_lettered += 1
            else:
                self.queue.requeue([op])
        else:
            self.queue.complete(op)
            result.synced += 1
            logger.info(f"Synced {op.kind.value} operation for {op.collection}")

    def apply(self, op: SyncOperation) -> None:
        """Apply one operation to the remote store.

        Raises:
            ValidationError: If the operation's record is malformed
            RemoteError: If the remote store rejects the write
        """
        if op.kind is OperationKind.DELETE:
            self.remote.remove(op.path)
            return
        self.remote.set(op.path, self.prepare_record(op))

    def prepare_record(self, op: SyncOperation) -> Dict[str, Any]:
        """Build the wire form of a create/update payload.

        Temporal fields become ISO-8601 strings and the sync stamps are
        written last so they override whatever the caller supplied.
        """
        record = serialize_record(validate_record(op.collection, op.payload))
        record[LAST_MODIFIED] = to_iso(self._clock())
        record[ORIGIN_DEVICE] = self.device_id
        return record
