"""Input validation for arkive-sync.

This module provides validation functions for values that end up in remote
paths or in the operation queue. All validators raise ValidationError with
descriptive messages.
"""

from __future__ import annotations

import uuid
from typing import Any

__all__ = [
    "ValidationError",
    "validate_collection_name",
    "validate_record_id",
    "validate_device_id",
    "validate_path",
    "RESERVED_COLLECTIONS",
]

# Characters the remote store does not accept inside a single path segment
FORBIDDEN_KEY_CHARS = frozenset("/.#$[]")
MAX_KEY_LENGTH = 768

# Collections written by the sync layer itself
RESERVED_COLLECTIONS = frozenset(["sync_metadata"])


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


def _validate_key(value: Any, field_name: str) -> str:
    """Validate a single path segment."""
    if not isinstance(value, str):
        raise ValidationError(
            field_name, f"must be a string, got {type(value).__name__}"
        )
    if not value.strip():
        raise ValidationError(field_name, "must not be empty")
    if len(value) > MAX_KEY_LENGTH:
        raise ValidationError(
            field_name, f"must be at most {MAX_KEY_LENGTH} characters"
        )
    bad = sorted(set(value) & FORBIDDEN_KEY_CHARS)
    if bad:
        raise ValidationError(
            field_name, f"contains forbidden characters: {''.join(bad)}"
        )
    return value


def validate_collection_name(name: Any, allow_reserved: bool = False) -> str:
    """Validate a record collection name such as ``receipts``."""
    _validate_key(name, "collection")
    if not allow_reserved and name in RESERVED_COLLECTIONS:
        raise ValidationError("collection", f"'{name}' is reserved")
    return name


def validate_record_id(record_id: Any, field_name: str = "id") -> str:
    """Validate a record id, converting ints to strings.

    Local stores often hand out integer primary keys; the remote path uses
    their string form.
    """
    if isinstance(record_id, bool):
        raise ValidationError(field_name, "must be a string or integer")
    if isinstance(record_id, int):
        record_id = str(record_id)
    return _validate_key(record_id, field_name)


def validate_device_id(device_id: Any) -> str:
    """Validate a device id (32 character UUID hex string)."""
    if not isinstance(device_id, str):
        raise ValidationError(
            "device_id", f"must be a string, got {type(device_id).__name__}"
        )
    if len(device_id) != 32:
        raise ValidationError("device_id", "must be 32 hex characters")
    try:
        uuid.UUID(hex=device_id)
    except ValueError:
        raise ValidationError("device_id", "must be a valid hex string") from None
    return device_id


def validate_path(path: Any, allow_root: bool = False) -> str:
    """Validate a slash separated remote path.

    Leading and trailing slashes are stripped. The empty path is the store
    root and is only accepted when ``allow_root`` is set.
    """
    if not isinstance(path, str):
        raise ValidationError("path", f"must be a string, got {type(path).__name__}")
    normalized = path.strip("/")
    if not normalized:
        if allow_root:
            return ""
        raise ValidationError("path", "must not be the root")
    for segment in normalized.split("/"):
        _validate_key(segment, "path")
    return normalized
