"""Pending mutation model for arkive-sync.

A SyncOperation records one local mutation (create, update or delete of a
record) that has not yet been confirmed by the remote store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from uuid6 import uuid7

from .records import ACCESS_LOG, DATE_FIELDS
from .timestamp_utils import parse_iso, utc_now
from .validation import ValidationError, validate_collection_name, validate_record_id


class OperationKind(Enum):
    """Kinds of mutation carried by a SyncOperation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Any) -> "OperationKind":
        """Accept an OperationKind or its string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(k.value for k in cls)
            raise ValidationError("kind", f"must be one of {choices}, got {value!r}") from None


def _encode_temporal(value: Any, key: str, temporal: Dict[str, str]) -> Any:
    # datetime first: it is a subclass of date
    if isinstance(value, datetime):
        temporal[key] = "datetime"
        return value.isoformat()
    if isinstance(value, date):
        temporal[key] = "date"
        return value.isoformat()
    return value


def _decode_temporal(value: Any, kind: str) -> Any:
    if kind == "datetime":
        return datetime.fromisoformat(value)
    if kind == "date":
        return date.fromisoformat(value)
    raise ValueError(f"Unknown temporal type {kind!r}")


def encode_payload(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Convert a payload to its JSON form for persistence.

    Only values that were datetime or date objects are converted, and their
    keys are listed in the returned tag map so decode_payload() can restore
    them exactly. Strings stay strings.

    Returns:
        (JSON-ready payload, {key: "datetime" | "date"})
    """
    encoded = dict(payload)
    temporal: Dict[str, str] = {}
    for name in DATE_FIELDS:
        if name in encoded:
            encoded[name] = _encode_temporal(encoded[name], name, temporal)

    access_log = encoded.get(ACCESS_LOG)
    if isinstance(access_log, list):
        entries = []
        for index, entry in enumerate(access_log):
            if isinstance(entry, dict) and "timestamp" in entry:
                key = f"{ACCESS_LOG}.{index}.timestamp"
                entry = {**entry, "timestamp": _encode_temporal(entry["timestamp"], key, temporal)}
            entries.append(entry)
        encoded[ACCESS_LOG] = entries
    return encoded, temporal


def decode_payload(encoded: Dict[str, Any], temporal: Dict[str, str]) -> Dict[str, Any]:
    """Reverse encode_payload().

    Raises:
        ValueError: If a tagged value does not parse
    """
    payload = dict(encoded)
    if any(key.startswith(f"{ACCESS_LOG}.") for key in temporal):
        payload[ACCESS_LOG] = [
            dict(entry) if isinstance(entry, dict) else entry
            for entry in payload.get(ACCESS_LOG) or []
        ]
    for key, kind in temporal.items():
        if key.startswith(f"{ACCESS_LOG}."):
            _, index, field_name = key.split(".")
            entry = payload[ACCESS_LOG][int(index)]
            entry[field_name] = _decode_temporal(entry[field_name], kind)
        else:
            payload[key] = _decode_temporal(payload[key], kind)
    return payload


@dataclass(frozen=True)
class SyncOperation:
    """One queued mutation.

    Operations are never modified after creation; a failed attempt puts the
    same object back in the queue.

    Attributes:
        id: Unique operation id (UUID7 hex)
        kind: create, update or delete
        collection: Collection the record belongs to
        payload: Snapshot of the record at enqueue time (must contain ``id``)
        created_at: When the operation was enqueued
        origin_device: Device id of the device that made the change
    """

    id: str
    kind: OperationKind
    collection: str
    payload: Dict[str, Any]
    created_at: datetime
    origin_device: str

    @property
    def record_id(self) -> str:
        """Id of the record this operation targets."""
        return validate_record_id(self.payload.get("id"))

    @property
    def path(self) -> str:
        """Remote path of the target record."""
        return f"{self.collection}/{self.record_id}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict.

        from_dict() of the result gives back an equal operation.
        """
        payload, temporal = encode_payload(self.payload)
        return {
            "id": self.id,
            "kind": self.kind.value,
            "collection": self.collection,
            "payload": payload,
            "temporal": temporal,
            "created_at": self.created_at.isoformat(),
            "origin_device": self.origin_device,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncOperation":
        """Create from a dict produced by to_dict().

        Raises:
            KeyError: If a field is missing
            ValueError: If a field has an invalid value
        """
        return cls(
            id=data["id"],
            kind=OperationKind.parse(data["kind"]),
            collection=data["collection"],
            payload=decode_payload(data["payload"], data.get("temporal") or {}),
            created_at=parse_iso(data["created_at"]),
            origin_device=data["origin_device"],
        )


def create_operation(
    kind: Any,
    collection: str,
    payload: Dict[str, Any],
    origin_device: str,
    clock: Optional[Callable[[], datetime]] = None,
) -> SyncOperation:
    """Build a new SyncOperation for a local mutation.

    Args:
        kind: OperationKind or its string value
        collection: Collection name
        payload: Record snapshot; copied so later local edits do not leak in
        origin_device: Id of this device
        clock: Time source (defaults to UTC now)

    Raises:
        ValidationError: If the collection name, kind or record id is invalid
    """
    validate_collection_name(collection)
    if not isinstance(payload, dict):
        raise ValidationError("payload", f"must be a mapping, got {type(payload).__name__}")
    if "id" not in payload:
        raise ValidationError("id", "is required")
    validate_record_id(payload["id"])
    return SyncOperation(
        id=uuid7().hex,
        kind=OperationKind.parse(kind),
        collection=collection,
        payload=dict(payload),
        created_at=(clock or utc_now)(),
        origin_device=origin_device,
    )
