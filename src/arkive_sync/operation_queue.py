"""Durable FIFO queue of pending sync operations.

The queue is persisted to local storage after every mutation so pending work
survives restarts. Everything in the live queue is, by construction, not yet
confirmed by the remote store.

Draining is a single locked step that returns a snapshot and empties the live
queue: operations enqueued while a drain pass is running land in the fresh
queue and are neither lost nor processed twice.

Operations that can never succeed are parked in a separate dead-letter list
instead of blocking the queue.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .operations import SyncOperation
from .storage import LocalStorage
from .timestamp_utils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

QUEUE_KEY = "sync_queue"
CORRUPT_QUEUE_KEY = "sync_queue.corrupt"
ATTEMPTS_KEY = "sync_attempts"
DEAD_LETTERS_KEY = "sync_dead_letters"


@dataclass(frozen=True)
class DeadLetter:
    """An operation removed from the queue because it kept failing.

    Attributes:
        operation: The operation as it was queued
        error: Last error message
        attempts: Number of failed attempts
        failed_at: When it was moved to the dead-letter list
    """

    operation: SyncOperation
    error: str
    attempts: int
    failed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.to_dict(),
            "error": self.error,
            "attempts": self.attempts,
            "failed_at": to_iso(self.failed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeadLetter":
        return cls(
            operation=SyncOperation.from_dict(data["operation"]),
            error=data.get("error", ""),
            attempts=int(data.get("attempts", 0)),
            failed_at=parse_iso(data["failed_at"]),
        )


class OperationQueue:
    """Ordered, persisted list of operations awaiting transmission."""

    def __init__(
        self,
        storage: LocalStorage,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize an empty queue bound to a storage.

        Call load() to restore persisted state.

        Args:
            storage: Local storage used for persistence
            clock: Time source for dead-letter timestamps
        """
        self.storage = storage
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._ops: List[SyncOperation] = []
        # Drained but not yet resolved; still persisted so a crash replays them
        self._in_flight: List[SyncOperation] = []
        self._attempts: Dict[str, int] = {}
        self._dead: List[DeadLetter] = []
        self.corrupted = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._ops)

    def pending_count(self) -> int:
        """Operations not yet confirmed, including those of a running pass."""
        with self._lock:
            return len(self._in_flight) + len(self._ops)

    def snapshot(self) -> Tuple[SyncOperation, ...]:
        """Return the unconfirmed operations without removing them."""
        with self._lock:
            return tuple(self._in_flight) + tuple(self._ops)

    def enqueue(self, op: SyncOperation) -> None:
        """Append an operation and persist the queue."""
        with self._lock:
            self._ops.append(op)
            self.persist()
        logger.debug(f"Queued {op.kind.value} {op.path} ({len(self)} pending)")

    def drain(self) -> Tuple[SyncOperation, ...]:
        """Take every pending operation and empty the live queue.

        Drained operations stay in storage until they are resolved with
        complete(), requeue() or dead_letter().
        """
        with self._lock:
            batch = tuple(self._ops)
            self._in_flight.extend(batch)
            self._ops = []
        return batch

    def _release(self, op: SyncOperation) -> None:
        for i, pending in enumerate(self._in_flight):
            if pending is op:
                del self._in_flight[i]
                return

    def complete(self, op: SyncOperation) -> None:
        """Mark a drained operation as confirmed by the remote store."""
        with self._lock:
            self._release(op)
            self._attempts.pop(op.id, None)

    def requeue(self, ops: Iterable[SyncOperation]) -> None:
        """Append operations (typically failed ones) at the tail."""
        with self._lock:
            for op in ops:
                self._release(op)
                self._ops.append(op)

    def record_failure(self, op: SyncOperation) -> int:
        """Count a failed attempt for an operation and return the new total."""
        with self._lock:
            count = self._attempts.get(op.id, 0) + 1
            self._attempts[op.id] = count
            return count

    def attempts(self, op_id: str) -> int:
        """Number of failed attempts recorded for an operation."""
        with self._lock:
            return self._attempts.get(op_id, 0)

    # ===== Dead letters =====

    def dead_letter(self, op: SyncOperation, error: str) -> DeadLetter:
        """Park a drained operation in the dead-letter list."""
        with self._lock:
            self._release(op)
            entry = DeadLetter(
                operation=op,
                error=error,
                attempts=self._attempts.pop(op.id, 0),
                failed_at=self._clock(),
            )
            self._dead.append(entry)
        logger.error(
            f"Moved {op.kind.value} {op.collection}/{op.payload.get('id')} "
            f"to dead letters: {error}"
        )
        return entry

    def dead_letters(self) -> Tuple[DeadLetter, ...]:
        """Return the dead-letter list."""
        with self._lock:
            return tuple(self._dead)

    def retry_dead_letters(self) -> int:
        """Move every dead letter back to the tail of the queue.

        Returns:
            Number of operations re-queued
        """
        with self._lock:
            revived = [entry.operation for entry in self._dead]
            self._dead = []
            self._ops.extend(revived)
            self.persist()
        if revived:
            logger.info(f"Re-queued {len(revived)} dead-lettered operations")
        return len(revived)

    def discard_dead_letters(self) -> int:
        """Delete every dead letter.

        Returns:
            Number of operations discarded
        """
        with self._lock:
            count = len(self._dead)
            self._dead = []
            self.persist()
        if count:
            logger.warning(f"Discarded {count} dead-lettered operations")
        return count

    # ===== Persistence =====

    def persist(self) -> None:
        """Write the queue, attempt counts and dead letters to storage."""
        with self._lock:
            pending = self._in_flight + self._ops
            live_ids = {op.id for op in pending}
            self._attempts = {k: v for k, v in self._attempts.items() if k in live_ids}
            self.storage.set_item(
                QUEUE_KEY, json.dumps([op.to_dict() for op in pending])
            )
            self.storage.set_item(ATTEMPTS_KEY, json.dumps(self._attempts))
            self.storage.set_item(
                DEAD_LETTERS_KEY, json.dumps([d.to_dict() for d in self._dead])
            )

    def load(self) -> None:
        """Restore state from storage.

        An unparsable queue resets to empty. This loses the pending
        operations, so the raw value is kept under a separate key and the
        ``corrupted`` flag is raised for status reporting.
        """
        with self._lock:
            raw = self.storage.get_item(QUEUE_KEY)
            self._ops = []
            self._in_flight = []
            self.corrupted = False
            if raw:
                try:
                    self._ops = [SyncOperation.from_dict(d) for d in json.loads(raw)]
                except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                    logger.error(
                        f"Persisted sync queue is corrupt, resetting to empty: {e}. "
                        f"Raw data kept under '{CORRUPT_QUEUE_KEY}'."
                    )
                    self.storage.set_item(CORRUPT_QUEUE_KEY, raw)
                    self.storage.set_item(QUEUE_KEY, "[]")
                    self._ops = []
                    self.corrupted = True

            self._attempts = {}
            raw_attempts = self.storage.get_item(ATTEMPTS_KEY)
            if raw_attempts:
                try:
                    self._attempts = {
                        str(k): int(v) for k, v in json.loads(raw_attempts).items()
                    }
                except (ValueError, AttributeError, TypeError) as e:
                    logger.warning(f"Ignoring unreadable attempt counts: {e}")

            self._dead = []
            raw_dead = self.storage.get_item(DEAD_LETTERS_KEY)
            if raw_dead:
                try:
                    self._dead = [DeadLetter.from_dict(d) for d in json.loads(raw_dead)]
                except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                    logger.error(f"Dead-letter list is corrupt, resetting to empty: {e}")
                    self._dead = []

        logger.info(f"Loaded sync queue with {len(self._ops)} pending operations")

    def reset(self) -> None:
        """Forget all in-memory state (storage is left alone)."""
        with self._lock:
            self._ops = []
            self._in_flight = []
            self._attempts = {}
            self._dead = []
            self.corrupted = False
