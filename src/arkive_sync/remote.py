"""Remote shared store access for arkive-sync.

The remote store is a hierarchical JSON tree addressed by slash separated
paths (``receipts/42``). This module provides:
- RemoteStore: the interface the sync engine talks to
- PathTree: the tree itself, used by in-process stores and the server
- MemoryRemoteStore: an in-process store with synchronous listeners
- HttpRemoteStore: a client for the reference store server (see server.py)
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .validation import validate_path

logger = logging.getLogger(__name__)

__all__ = [
    "HttpRemoteStore",
    "Listener",
    "MemoryRemoteStore",
    "OfflineError",
    "PathTree",
    "RemoteError",
    "RemoteStore",
    "SyncError",
]

SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class SyncError(Exception):
    """Base class for sync failures surfaced to callers."""


class RemoteError(SyncError):
    """The remote store could not be reached or rejected a request."""


class OfflineError(SyncError):
    """The operation needs connectivity and the device is offline."""


class Listener(ABC):
    """Handle for an active listen() registration."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering snapshots. Safe to call more than once."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once close() has been called."""


class RemoteStore(ABC):
    """Interface of a path-addressed remote store."""

    @abstractmethod
    def get(self, path: str) -> Any:
        """Read the value at a path (None if absent)."""

    @abstractmethod
    def set(self, path: str, value: Any) -> None:
        """Replace the value at a path."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Delete the value at a path (the root clears everything)."""

    @abstractmethod
    def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Listener:
        """Deliver the value at a path now and after every change."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Probe whether the store is reachable."""


class PathTree:
    """Nested dict addressed by slash separated paths.

    Writing None deletes. Removing a child leaves no empty parents behind.
    Every write bumps ``revision``.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.root: Dict[str, Any] = data if isinstance(data, dict) else {}
        self.revision = 0

    @staticmethod
    def split(path: str) -> List[str]:
        normalized = validate_path(path, allow_root=True)
        return normalized.split("/") if normalized else []

    def get(self, path: str) -> Any:
        """Return a deep copy of the value at a path, or None."""
        node: Any = self.root
        for key in self.split(path):
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        if node == {}:
            return None
        return copy.deepcopy(node)

    def set(self, path: str, value: Any) -> int:
        """Store a deep copy of a value at a path and return the new revision."""
        keys = self.split(path)
        if value is None:
            return self.remove(path)
        value = copy.deepcopy(value)
        if not keys:
            if not isinstance(value, dict):
                raise ValueError("The root can only hold an object")
            self.root = value
        else:
            node = self.root
            for key in keys[:-1]:
                child = node.get(key)
                if not isinstance(child, dict):
                    child = {}
                    node[key] = child
                node = child
            node[keys[-1]] = value
        self.revision += 1
        return self.revision

    def remove(self, path: str) -> int:
        """Delete the value at a path and return the new revision."""
        keys = self.split(path)
        if not keys:
            self.root = {}
        else:
            trail: List[Tuple[Dict[str, Any], str]] = []
            node: Any = self.root
            for key in keys[:-1]:
                if not isinstance(node, dict) or not isinstance(node.get(key), dict):
                    node = None
                    break
                trail.append((node, key))
                node = node[key]
            if isinstance(node, dict):
                node.pop(keys[-1], None)
                # Prune parents left empty by the delete
                for parent, key in reversed(trail):
                    if parent[key]:
                        break
                    del parent[key]
        self.revision += 1
        return self.revision


def _paths_overlap(a: str, b: str) -> bool:
    """True if one path is an ancestor of (or equal to) the other."""
    if not a or not b:
        return True
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


class _MemoryListener(Listener):
    def __init__(self, store: "MemoryRemoteStore", key: int) -> None:
        self._store = store
        self._key = key
        self._closed = False

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._store._drop_listener(self._key)

    @property
    def closed(self) -> bool:
        return self._closed


class MemoryRemoteStore(RemoteStore):
    """In-process remote store.

    Listeners are called synchronously on the writing thread after each write
    that touches their path. Setting ``connected`` to False makes every call
    fail with RemoteError, which simulates an outage.
    """

    def __init__(self, data_file: Optional[Union[Path, str]] = None) -> None:
        """Initialize the store.

        Args:
            data_file: Optional JSON file the tree is loaded from and saved to
                after every write
        """
        self._lock = threading.RLock()
        self._listeners: Dict[int, Tuple[str, SnapshotCallback, Optional[ErrorCallback]]] = {}
        self._next_key = 0
        self.connected = True
        self.data_file = Path(data_file) if data_file else None
        self.tree = PathTree(self._load_file())

    def _load_file(self) -> Optional[Dict[str, Any]]:
        if not self.data_file or not self.data_file.exists():
            return None
        try:
            with open(self.data_file, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot load remote store data from {self.data_file}: {e}")
            return None

    def _save_file(self) -> None:
        if not self.data_file:
            return
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.data_file.with_suffix(self.data_file.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self.tree.root, f, indent=2)
        tmp.replace(self.data_file)

    def _check_connected(self) -> None:
        if not self.connected:
            raise RemoteError("Remote store unreachable")

    @property
    def revision(self) -> int:
        with self._lock:
            return self.tree.revision

    def get(self, path: str) -> Any:
        self._check_connected()
        with self._lock:
            return self.tree.get(path)

    def set(self, path: str, value: Any) -> None:
        self._check_connected()
        with self._lock:
            self.tree.set(path, value)
            self._save_file()
        self._notify(path)

    def remove(self, path: str) -> None:
        self._check_connected()
        with self._lock:
            self.tree.remove(path)
            self._save_file()
        self._notify(path)

    def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Listener:
        normalized = validate_path(path, allow_root=True)
        self._check_connected()
        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._listeners[key] = (normalized, callback, on_error)
            value = self.tree.get(normalized)
        listener = _MemoryListener(self, key)
        self._deliver(key, callback, on_error, value)
        return listener

    def is_connected(self) -> bool:
        return self.connected

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _drop_listener(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)

    def _notify(self, written_path: str) -> None:
        written = validate_path(written_path, allow_root=True)
        with self._lock:
            targets = [
                (key, path, callback, on_error)
                for key, (path, callback, on_error) in self._listeners.items()
                if _paths_overlap(path, written)
            ]
            snapshots = [self.tree.get(path) for _, path, _, _ in targets]
        for (key, _, callback, on_error), value in zip(targets, snapshots):
            self._deliver(key, callback, on_error, value)

    def _deliver(
        self,
        key: int,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback],
        value: Any,
    ) -> None:
        with self._lock:
            if key not in self._listeners:
                return
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Remote listener callback failed: {e}")
            if on_error is not None:
                on_error(e)


class _PollingListener(Listener):
    """Polls a path and delivers the value whenever it changes."""

    def __init__(
        self,
        store: "HttpRemoteStore",
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback],
        interval: float,
    ) -> None:
        self._store = store
        self._path = path
        self._callback = callback
        self._on_error = on_error
        self._interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name=f"remote-listener:{path}"
        )
        self._thread.start()

    def _run(self) -> None:
        sentinel = object()
        last: Any = sentinel
        while not self._stop.is_set():
            try:
                value = self._store.get(self._path)
                if last is sentinel or value != last:
                    last = value
                    if not self._stop.is_set():
                        self._callback(value)
            except RemoteError as e:
                logger.warning(f"Polling {self._path} failed: {e}")
                if self._on_error is not None:
                    self._on_error(e)
            except Exception as e:
                logger.error(f"Remote listener callback failed for {self._path}: {e}")
                if self._on_error is not None:
                    self._on_error(e)
            self._stop.wait(self._interval)

    def close(self) -> None:
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=self._interval + 1)

    @property
    def closed(self) -> bool:
        return self._stop.is_set()


class HttpRemoteStore(RemoteStore):
    """Client for the reference store server.

    Listening is implemented by polling the path every ``poll_interval``
    seconds on a daemon thread.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        poll_interval: float = 2.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server URL, e.g. http://127.0.0.1:8384
            timeout: Request timeout in seconds
            poll_interval: Seconds between polls of a listened path
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval

    def _url(self, path: str) -> str:
        normalized = validate_path(path, allow_root=True)
        return f"{self.base_url}/store/{urllib.parse.quote(normalized)}"

    def _make_request(
        self,
        url: str,
        method: str = "GET",
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an HTTP request to the store server.

        Args:
            url: Full URL to request
            method: HTTP method
            data: JSON body to send

        Returns:
            Dict with success status and response data or error
        """
        try:
            if data is not None:
                request = urllib.request.Request(
                    url,
                    data=json.dumps(data).encode("utf-8"),
                    method=method,
                    headers={"Content-Type": "application/json"},
                )
            else:
                request = urllib.request.Request(url, method=method)

            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
            return {"success": True, "data": json.loads(body) if body else {}}

        except urllib.error.HTTPError as e:
            try:
                error_data = json.loads(e.read().decode("utf-8"))
                error_msg = error_data.get("error", f"HTTP {e.code}: {e.reason}")
            except Exception:
                error_msg = f"HTTP {e.code}: {e.reason}"
            return {"success": False, "error": error_msg}
        except urllib.error.URLError as e:
            return {"success": False, "error": f"Connection failed: {e.reason}"}
        except (OSError, ValueError) as e:
            return {"success": False, "error": str(e)}

    def _call(self, path: str, method: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._make_request(self._url(path), method=method, data=data)
        if not response.get("success"):
            raise RemoteError(f"{method} {path or '/'} failed: {response.get('error')}")
        return response["data"]

    def get(self, path: str) -> Any:
        return self._call(path, "GET").get("value")

    def set(self, path: str, value: Any) -> None:
        self._call(path, "PUT", {"value": value})

    def remove(self, path: str) -> None:
        self._call(path, "DELETE")

    def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Listener:
        normalized = validate_path(path, allow_root=True)
        return _PollingListener(self, normalized, callback, on_error, self.poll_interval)

    def is_connected(self) -> bool:
        response = self._make_request(f"{self.base_url}/store-status", method="GET")
        if not response.get("success"):
            logger.debug(f"Store server not reachable: {response.get('error')}")
            return False
        return response["data"].get("status") == "ok"
