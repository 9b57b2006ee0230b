"""Pytest fixtures for sync integration tests.

This module provides fixtures for:
- Simulated devices (engine, storage, clock) sharing one remote store
- A real store server running in a background thread
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional

import pytest
import requests
from werkzeug.serving import BaseWSGIServer, make_server

from arkive_sync.device import DEVICE_ID_KEY
from arkive_sync.engine import SyncEngine
from arkive_sync.remote import MemoryRemoteStore, RemoteStore
from arkive_sync.server import create_app
from arkive_sync.storage import LocalStorage

from helpers import DEVICE_A_ID, DEVICE_B_ID, FakeClock, FlakyRemoteStore


@dataclass
class SyncDevice:
    """A simulated device for testing."""

    name: str
    device_id: str
    storage: LocalStorage
    clock: FakeClock
    engine: SyncEngine

    def restart(self, remote: RemoteStore) -> None:
        """Rebuild the engine over the same storage (simulates an app restart)."""
        self.engine.stop()
        self.engine = SyncEngine(self.storage, remote, clock=self.clock, probe=False)


def create_device(
    name: str,
    device_id: str,
    db_path: Path,
    remote: RemoteStore,
    initially_online: bool = True,
) -> SyncDevice:
    """Create a device with a fixed device id.

    Args:
        name: Label used in assertion messages
        device_id: Device id written to storage before the engine starts
        db_path: Local storage file
        remote: Remote store shared with other devices
        initially_online: Starting connectivity

    Returns:
        SyncDevice with a ready engine
    """
    storage = LocalStorage(db_path)
    storage.set_item(DEVICE_ID_KEY, device_id)
    clock = FakeClock()
    engine = SyncEngine(
        storage, remote, clock=clock, probe=False, initially_online=initially_online
    )
    return SyncDevice(name, device_id, storage, clock, engine)


@pytest.fixture
def shared_remote() -> FlakyRemoteStore:
    """Remote store shared by device_a and device_b."""
    return FlakyRemoteStore()


@pytest.fixture
def device_a(tmp_path: Path, shared_remote: FlakyRemoteStore) -> Generator[SyncDevice, None, None]:
    """First device."""
    device = create_device("a", DEVICE_A_ID, tmp_path / "a" / "local.db", shared_remote)
    yield device
    device.engine.stop()
    device.storage.close()


@pytest.fixture
def device_b(tmp_path: Path, shared_remote: FlakyRemoteStore) -> Generator[SyncDevice, None, None]:
    """Second device."""
    device = create_device("b", DEVICE_B_ID, tmp_path / "b" / "local.db", shared_remote)
    yield device
    device.engine.stop()
    device.storage.close()


@dataclass
class StoreServer:
    """A store server running in this process."""

    store: MemoryRemoteStore
    server: BaseWSGIServer
    thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.server.server_port}"

    def is_running(self) -> bool:
        """Check if the server is responding."""
        try:
            resp = requests.get(f"{self.url}/store-status", timeout=1)
            return resp.status_code == 200
        except requests.exceptions.RequestException:
            return False


@pytest.fixture
def store_server(tmp_path: Path) -> Generator[StoreServer, None, None]:
    """Run the store server on a free port in a background thread."""
    store = MemoryRemoteStore(data_file=tmp_path / "store.json")
    app = create_app(store=store)
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    running = StoreServer(store=store, server=server, thread=thread)
    yield running
    server.shutdown()
    thread.join(timeout=5)
    server.server_close()
