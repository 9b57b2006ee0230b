"""arkive-sync: offline-first synchronization of business records.

Local mutations are queued durably and sent to a shared remote store when the
device is online; remote changes made by other devices are delivered back and
merged into the locally visible records.
"""

from .config import Config
from .engine import SyncEngine, SyncStatus
from .operation_queue import DeadLetter, OperationQueue
from .operations import OperationKind, SyncOperation
from .processor import DrainResult
from .reconcile import CollectionView, merge, sort_records
from .remote import (
    HttpRemoteStore,
    MemoryRemoteStore,
    OfflineError,
    RemoteError,
    RemoteStore,
    SyncError,
)
from .storage import LocalStorage, StorageError
from .validation import ValidationError

__version__ = "0.1.0"

__all__ = [
    "CollectionView",
    "Config",
    "DeadLetter",
    "DrainResult",
    "HttpRemoteStore",
    "LocalStorage",
    "MemoryRemoteStore",
    "OfflineError",
    "OperationKind",
    "OperationQueue",
    "RemoteError",
    "RemoteStore",
    "StorageError",
    "SyncEngine",
    "SyncError",
    "SyncOperation",
    "SyncStatus",
    "ValidationError",
    "merge",
    "sort_records",
]
