"""Device identity for arkive-sync.

Every installation tags the records it writes with a stable device id so that
its own writes can be recognized when the remote store echoes them back.
"""

from __future__ import annotations

import logging

from uuid6 import uuid7

from .storage import LocalStorage, StorageError

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"


def get_or_create_device_id(storage: LocalStorage) -> str:
    """Return the persisted device id, creating it on first use.

    Storage failures are not fatal: an ephemeral id is returned for this run.
    Writes made under an ephemeral id will not be recognized as our own once
    the process restarts.

    Args:
        storage: Local storage holding the device id

    Returns:
        Device id as a 32 character hex string
    """
    try:
        device_id = storage.get_item(DEVICE_ID_KEY)
        if device_id:
            return device_id
    except StorageError as e:
        logger.warning(f"Cannot read device id, using an ephemeral one: {e}")
        return uuid7().hex

    device_id = uuid7().hex
    try:
        storage.set_item(DEVICE_ID_KEY, device_id)
        logger.info(f"Created device id {device_id}")
    except StorageError as e:
        logger.warning(f"Cannot persist device id, using it for this run only: {e}")
    return device_id
