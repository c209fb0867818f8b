"""
Deterministic hashing for the audit chain.

Every audit entry hash must be reproducible from its stored columns alone,
so event payloads are canonicalised before they are stored or hashed.
"""

import enum
import hashlib
import json
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return format_timestamp(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, uuid.UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _sort_keys(value: Any) -> Any:
    # Objects are rebuilt with sorted keys at every depth; arrays keep order.
    if isinstance(value, dict):
        return {str(k): _sort_keys(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_sort_keys(v) for v in value]
    return value


def canonical_json(data: dict[str, Any]) -> str:
    """
    Convert event data to its canonical JSON string.

    - Keys are sorted recursively, nested objects included
    - Arrays keep their original order
    - No whitespace
    - Decimal, UUID, datetime and enum values become strings
    """
    return json.dumps(
        _sort_keys(data),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_serializer,
    )


def format_timestamp(value: datetime) -> str:
    """Render *value* as UTC ISO-8601 with microseconds, e.g. ``2026-01-02T03:04:05.000006Z``.

    Naive datetimes (SQLite round-trips drop tzinfo) are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def compute_entry_hash(
    prev_hash: str,
    event_data_json: str,
    actor_id: Optional[uuid.UUID],
    entity_type: str,
    entity_id: str,
    created_at: datetime,
) -> str:
    """
    SHA-256 over ``prev_hash ‖ event_data_json ‖ actor_id ‖ entity_type ‖
    entity_id ‖ created_at``.

    A missing actor contributes the empty string.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    source = "".join(
        [
            prev_hash,
            event_data_json,
            str(actor_id) if actor_id is not None else "",
            entity_type,
            str(entity_id),
            format_timestamp(created_at),
        ]
    )
    return hashlib.sha256(source.encode("utf-8")).hexdigest()
