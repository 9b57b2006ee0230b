"""Test helpers for arkive-sync tests.

This module provides deterministic device ids, a controllable clock, a remote
store that fails on demand, and record factories.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from arkive_sync.remote import MemoryRemoteStore, RemoteError


# Deterministic device ids (32 hex chars)
DEVICE_A_ID = uuid.UUID("00000000-0000-7000-8000-00000000000a").hex
DEVICE_B_ID = uuid.UUID("00000000-0000-7000-8000-00000000000b").hex

START_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock returning a fixed time until advanced."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FlakyRemoteStore(MemoryRemoteStore):
    """MemoryRemoteStore whose writes can be made to fail.

    Attributes:
        fail_writes: Number of upcoming writes that raise RemoteError
        fail_paths: Paths whose writes always raise RemoteError
        writes: Log of successful writes as (method, path)
        before_write: Hook called before every write attempt
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = 0
        self.fail_paths: set = set()
        self.writes: List[Tuple[str, str]] = []
        self.before_write: Optional[Callable[[str], None]] = None

    def _attempt(self, method: str, path: str) -> None:
        if self.before_write is not None:
            self.before_write(path)
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise RemoteError(f"Simulated failure writing {path}")
        if path in self.fail_paths:
            raise RemoteError(f"Simulated permanent failure writing {path}")

    def set(self, path: str, value: Any) -> None:
        self._attempt("set", path)
        super().set(path, value)
        self.writes.append(("set", path))

    def remove(self, path: str) -> None:
        self._attempt("remove", path)
        super().remove(path)
        self.writes.append(("remove", path))


def make_receipt(record_id: str, day: int = 1, **fields: Any) -> Dict[str, Any]:
    """Build a valid receipt dated 2024-01-<day>."""
    record: Dict[str, Any] = {
        "id": record_id,
        "clientName": f"Client {record_id}",
        "amount": 100.0,
        "date": datetime(2024, 1, day, 9, 0, tzinfo=timezone.utc),
    }
    record.update(fields)
    return record


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 5.0,
    interval: float = 0.05,
) -> bool:
    """Wait for a condition to become true."""
    start = time.time()
    while time.time() - start < timeout:
        if condition():
            return True
        time.sleep(interval)
    return False
