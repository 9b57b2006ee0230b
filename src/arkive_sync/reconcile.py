"""Reconciliation of remote snapshots with the locally visible records.

merge() is the whole policy: records are matched by id and the remote copy
always replaces the local one, whatever their modification times. Records
only known locally stay. The result is ordered newest first by a sort field.

CollectionView holds the visible list of one collection and applies merges
under a lock, since remote deliveries and local commits arrive on different
threads.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .timestamp_utils import to_epoch

logger = logging.getLogger(__name__)

__all__ = ["CollectionView", "merge", "sort_records"]

Record = Dict[str, Any]


def _sort_key(sort_field: str) -> Callable[[Record], Tuple[int, float, str]]:
    def key(record: Record) -> Tuple[int, float, str]:
        epoch = to_epoch(record.get(sort_field))
        # Newest first, undated records last, id as a stable tie-breaker
        if epoch is None:
            return (1, 0.0, str(record.get("id")))
        return (0, -epoch, str(record.get("id")))

    return key


def sort_records(records: Iterable[Record], sort_field: str = "date") -> List[Record]:
    """Order records by a temporal field, newest first."""
    return sorted(records, key=_sort_key(sort_field))


def merge(
    current_visible: Iterable[Record],
    incoming_remote: Iterable[Record],
    sort_field: str = "date",
) -> List[Record]:
    """Merge a remote snapshot into the visible records.

    Pure function of its inputs: neither argument is modified.

    Args:
        current_visible: Records currently shown
        incoming_remote: Records delivered by the remote store
        sort_field: Temporal field used for ordering

    Returns:
        New list with one record per id, remote winning on collisions
    """
    by_id: Dict[str, Record] = {}
    for record in current_visible:
        if record is not None and record.get("id") is not None:
            by_id[str(record["id"])] = record
    for record in incoming_remote:
        if record is not None and record.get("id") is not None:
            by_id[str(record["id"])] = record
    return sort_records(by_id.values(), sort_field)


class CollectionView:
    """Thread-safe visible list for one collection."""

    def __init__(
        self,
        collection: str,
        sort_field: str = "date",
        on_change: Optional[Callable[[List[Record]], None]] = None,
        initial: Optional[Iterable[Record]] = None,
    ) -> None:
        """Initialize a view.

        Args:
            collection: Collection name
            sort_field: Temporal field used for ordering
            on_change: Called with the new list after every change
            initial: Records the host already holds locally
        """
        self.collection = collection
        self.sort_field = sort_field
        self._on_change = on_change
        self._lock = threading.Lock()
        self._records: List[Record] = merge([], list(initial or []), sort_field)

    def records(self) -> List[Record]:
        """Return a copy of the visible list."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, record_id: Any) -> Optional[Record]:
        key = str(record_id)
        with self._lock:
            for record in self._records:
                if str(record.get("id")) == key:
                    return record
        return None

    def apply_remote(self, incoming: Iterable[Record]) -> List[Record]:
        """Merge a remote snapshot (remote wins) and return the new list."""
        incoming = list(incoming)
        with self._lock:
            self._records = merge(self._records, incoming, self.sort_field)
            result = list(self._records)
        logger.debug(
            f"Merged {len(incoming)} remote {self.collection} records "
            f"({len(result)} visible)"
        )
        self._changed(result)
        return result

    def apply_local(self, record: Record) -> List[Record]:
        """Show a locally committed record.

        A record already visible under the same id is kept, since the copy
        that came from the remote store is authoritative. Use replace_local()
        for local edits that should show immediately.
        """
        with self._lock:
            if any(str(r.get("id")) == str(record.get("id")) for r in self._records):
                return list(self._records)
            self._records = merge(self._records, [record], self.sort_field)
            result = list(self._records)
        self._changed(result)
        return result

    def replace_local(self, record: Record) -> List[Record]:
        """Show a locally edited record, replacing any visible copy."""
        with self._lock:
            self._records = merge(self._records, [record], self.sort_field)
            result = list(self._records)
        self._changed(result)
        return result

    def remove(self, record_id: Any) -> bool:
        """Remove a record from the visible list."""
        key = str(record_id)
        with self._lock:
            kept = [r for r in self._records if str(r.get("id")) != key]
            removed = len(kept) != len(self._records)
            self._records = kept
            result = list(kept)
        if removed:
            self._changed(result)
        return removed

    def _changed(self, records: List[Record]) -> None:
        if self._on_change is not None:
            self._on_change(records)
