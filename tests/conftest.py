"""Pytest fixtures for arkive-sync tests.

This module provides fixtures for configuration, local storage, remote stores
and sync engines wired to a controllable clock.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from arkive_sync.config import Config
from arkive_sync.engine import SyncEngine
from arkive_sync.remote import MemoryRemoteStore
from arkive_sync.storage import LocalStorage

from helpers import FakeClock, FlakyRemoteStore


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "arkive_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration."""
    return Config(config_dir=test_config_dir)


@pytest.fixture
def storage(tmp_path: Path) -> Generator[LocalStorage, None, None]:
    """Create a file-backed local storage."""
    store = LocalStorage(tmp_path / "local.db")
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock frozen at 2024-01-15 10:00 UTC."""
    return FakeClock()


@pytest.fixture
def remote() -> FlakyRemoteStore:
    """Create an in-process remote store that can be made to fail."""
    return FlakyRemoteStore()


@pytest.fixture
def engine(
    storage: LocalStorage, remote: MemoryRemoteStore, clock: FakeClock
) -> Generator[SyncEngine, None, None]:
    """Create an online sync engine without connectivity probing.

    Connectivity only changes through engine.set_online().
    """
    sync_engine = SyncEngine(storage, remote, clock=clock, probe=False)
    yield sync_engine
    sync_engine.stop()
