"""Pytest fixtures for store server API tests.

Provides a Flask test client over an in-memory store.
"""

from __future__ import annotations

from typing import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient

from arkive_sync.remote import MemoryRemoteStore
from arkive_sync.server import create_app


@pytest.fixture
def memory_store() -> MemoryRemoteStore:
    """Create the store served by the app."""
    return MemoryRemoteStore()


@pytest.fixture
def web_app(memory_store: MemoryRemoteStore) -> Generator[Flask, None, None]:
    """Create Flask app for testing.

    Args:
        memory_store: Store to serve

    Yields:
        Flask application instance
    """
    app = create_app(store=memory_store)
    app.config["TESTING"] = True
    yield app


@pytest.fixture
def client(web_app: Flask) -> FlaskClient:
    """Create Flask test client."""
    return web_app.test_client()
