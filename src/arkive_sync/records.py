"""Record schemas and the temporal field codec.

Records are plain dicts: an ``id``, the domain fields of their collection,
and the sync stamps ``lastModified`` and ``originDevice``. Each known
collection has a CollectionSchema naming the fields it must carry; records of
unknown collections only need an id.

Temporal fields are datetimes locally and ISO-8601 strings on the wire.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Optional

from .timestamp_utils import parse_iso, to_iso
from .validation import ValidationError, validate_record_id

logger = logging.getLogger(__name__)

__all__ = [
    "CollectionSchema",
    "DATE_FIELDS",
    "LAST_MODIFIED",
    "ORIGIN_DEVICE",
    "SCHEMAS",
    "deserialize_record",
    "get_schema",
    "record_path",
    "serialize_record",
    "snapshot_records",
    "validate_record",
]

LAST_MODIFIED = "lastModified"
ORIGIN_DEVICE = "originDevice"

# Top-level fields converted between datetime and ISO-8601
DATE_FIELDS = (
    "date",
    "createdAt",
    "updatedAt",
    "lastLogin",
    "uploadedAt",
    "joinDate",
    "timestamp",
    "lastModified",
    "lastAccessed",
)

ACCESS_LOG = "accessLog"


@dataclass(frozen=True)
class CollectionSchema:
    """Field set of one record collection.

    Attributes:
        name: Collection name, also the first remote path segment
        required: Fields every record must carry besides ``id``
        numeric: Fields that must be numbers when present
        sort_field: Field used to order the visible list (newest first)
    """

    name: str
    required: FrozenSet[str] = field(default_factory=frozenset)
    numeric: FrozenSet[str] = field(default_factory=frozenset)
    sort_field: str = "date"


SCHEMAS: Dict[str, CollectionSchema] = {
    schema.name: schema
    for schema in (
        CollectionSchema(
            "receipts",
            required=frozenset(["clientName", "amount", "date"]),
            numeric=frozenset(["amount"]),
        ),
        CollectionSchema(
            "expenses",
            required=frozenset(["description", "amount", "date"]),
            numeric=frozenset(["amount"]),
        ),
        CollectionSchema(
            "clients",
            required=frozenset(["name"]),
            sort_field="createdAt",
        ),
        CollectionSchema(
            "documents",
            required=frozenset(["fileName"]),
            numeric=frozenset(["fileSize"]),
            sort_field="uploadedAt",
        ),
        CollectionSchema(
            "employees",
            required=frozenset(["name"]),
            numeric=frozenset(["salary"]),
            sort_field="joinDate",
        ),
        CollectionSchema(
            "attendance",
            required=frozenset(["employeeId", "date"]),
        ),
        CollectionSchema(
            "users",
            required=frozenset(["username"]),
            sort_field="createdAt",
        ),
    )
}


def get_schema(collection: str) -> CollectionSchema:
    """Get the schema for a collection, or a generic one if unknown."""
    schema = SCHEMAS.get(collection)
    if schema is None:
        return CollectionSchema(collection)
    return schema


def validate_record(collection: str, record: Any) -> Dict[str, Any]:
    """Check a record against its collection schema.

    Args:
        collection: Collection the record belongs to
        record: Record to check

    Returns:
        The record, unchanged

    Raises:
        ValidationError: If the record is not a dict, lacks an id or a
            required field, or carries a non-numeric numeric field
    """
    if not isinstance(record, dict):
        raise ValidationError(
            "record", f"must be a mapping, got {type(record).__name__}"
        )
    if "id" not in record:
        raise ValidationError("id", "is required")
    validate_record_id(record["id"])

    schema = get_schema(collection)
    missing = sorted(f for f in schema.required if record.get(f) in (None, ""))
    if missing:
        raise ValidationError(
            missing[0], f"is required for {collection} records"
        )
    for name in sorted(schema.numeric):
        value = record.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(name, f"must be a number, got {type(value).__name__}")
    return record


def _encode(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return to_iso(value)
    return value


def _decode(value: Any, field_name: str, record_id: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return parse_iso(value)
    except ValueError as e:
        logger.warning(
            f"Failed to parse date field '{field_name}' of record {record_id}: {e}"
        )
        return value


def serialize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a record with all temporal fields as ISO-8601 strings."""
    result = dict(record)
    for name in DATE_FIELDS:
        if name in result:
            result[name] = _encode(result[name])

    access_log = result.get(ACCESS_LOG)
    if isinstance(access_log, list):
        result[ACCESS_LOG] = [
            {**entry, "timestamp": _encode(entry["timestamp"])}
            if isinstance(entry, dict) and "timestamp" in entry
            else entry
            for entry in access_log
        ]
    return result


def deserialize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a record with temporal fields parsed into datetimes.

    Values that do not parse are logged and left as received.
    """
    result = dict(record)
    record_id = result.get("id")
    for name in DATE_FIELDS:
        if name in result:
            result[name] = _decode(result[name], name, record_id)

    access_log = result.get(ACCESS_LOG)
    if isinstance(access_log, list):
        entries: List[Any] = []
        for entry in access_log:
            if isinstance(entry, dict) and "timestamp" in entry:
                entry = {
                    **entry,
                    "timestamp": _decode(
                        entry["timestamp"], f"{ACCESS_LOG}.timestamp", record_id
                    ),
                }
            entries.append(entry)
        result[ACCESS_LOG] = entries
    return result


def record_path(collection: str, record_id: Any) -> str:
    """Remote path of one record."""
    return f"{collection}/{validate_record_id(record_id)}"


def snapshot_records(snapshot: Optional[Any]) -> List[Dict[str, Any]]:
    """Turn a collection snapshot into a list of records.

    Collections are stored as a mapping of id to record; a missing collection
    arrives as None. Non-dict children are skipped.
    """
    if not snapshot:
        return []
    if isinstance(snapshot, dict):
        values = snapshot.values()
    elif isinstance(snapshot, list):
        values = snapshot
    else:
        logger.warning(f"Ignoring collection snapshot of type {type(snapshot).__name__}")
        return []
    return [value for value in values if isinstance(value, dict)]
