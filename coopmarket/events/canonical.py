"""
Deterministic serialization used only to build hash inputs.

Postgres JSONB does not preserve object key order, so an event read back from
the store must encode to exactly the same text it was hashed from. Keys are
sorted at every level; sequences keep their order.
"""
import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def _plain(value: Any) -> Any:
    """Coerces values json does not know natively into their natural textual form."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=canonical_encode)
    raise TypeError(f"Cannot canonically encode {type(value).__name__}")


def canonical_encode(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_plain,
    )


def sha256_hex(value: Any) -> str:
    return hashlib.sha256(canonical_encode(value).encode("utf-8")).hexdigest()
