"""
Canonical JSON and SHA-256 digests for the audit trail.

The same payload must always produce the same digest, whichever process
wrote it and whichever database stored it.  Decimals are normalized
(``30000.00`` and ``30000.000000000`` are the same amount) and keys are
sorted.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"cannot encode {type(value).__name__} in an audit payload")


def canonical_json(data: Any) -> str:
    """Sorted keys, no whitespace, ledger types rendered as strings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_value)


def to_json_safe(data: dict | None) -> dict:
    """The plain-JSON form of ``data``, as it will read back from a JSON column."""
    return json.loads(canonical_json(data or {}))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def payload_digest(payload: dict | None) -> str:
    return _sha256(canonical_json(payload or {}))


def chain_digest(
    seq: int,
    entity_type: str,
    entity_id: UUID | str,
    action: str,
    actor_id: UUID | str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Digest of one audit event, linked to the event before it.

    occurred_at is left out: SQLite drops the timezone on read, so it would
    not survive a round trip.  Ordering is covered by ``seq``.
    """
    parts = (
        str(seq),
        entity_type,
        str(entity_id),
        action,
        str(actor_id),
        payload_hash,
        prev_hash or GENESIS_MARKER,
    )
    return _sha256("|".join(parts))
