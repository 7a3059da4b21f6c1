"""
Event ledger: append-only, hash-chained facts keyed by (aggregate, version).

Appends use optimistic concurrency. The latest version of the aggregate is read,
the next event is chained to it and inserted; if a concurrent writer already took
that version, the unique constraint rejects the insert and the whole
read-compute-insert sequence is retried a bounded number of times.
"""
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise.exceptions import IntegrityError

from coopmarket.core.config import LEDGER_APPEND_RETRIES
from coopmarket.core.errors import LedgerAppendError
from coopmarket.events.canonical import canonical_encode, sha256_hex
from coopmarket.models.event_log import EventLog
from coopmarket.schemas.ledger import Actor, ChainVerification, LedgerEvent

log = logging.getLogger(__name__)


def new_event_id() -> str:
    """UUID with a millisecond timestamp prefix (v7 layout), so ids sort by creation time."""
    value = (time.time_ns() // 1_000_000) << 80 | int.from_bytes(os.urandom(10), "big")
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return str(UUID(int=value))


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def compute_event_hash(
    event_type: str,
    data: Dict[str, Any],
    previous_hash: Optional[str],
    occurred_at: str,
) -> str:
    return sha256_hex({
        "eventType": event_type,
        "data": data,
        "previousHash": previous_hash,
        "occurredAt": occurred_at,
    })


def _to_event(row: EventLog) -> LedgerEvent:
    return LedgerEvent(
        id=row.id,
        type=row.event_type,
        aggregate_id=row.aggregate_id,
        aggregate_type=row.aggregate_type,
        version=row.version,
        occurred_at=row.occurred_at,
        actor=Actor(id=row.actor_id, role=row.actor_role),
        data=row.data,
        previous_hash=row.previous_hash,
        hash=row.hash,
    )


async def append_event(
    event_type: str,
    aggregate_id,
    aggregate_type: str,
    actor: Actor,
    data: Dict[str, Any],
    max_attempts: int = LEDGER_APPEND_RETRIES,
) -> LedgerEvent:
    """
    Appends one event to the aggregate's chain and returns it.

    Raises LedgerAppendError when every attempt lost the version race. The caller's
    command must fail in that case; an append is never fire-and-forget.
    """
    aggregate_id = str(aggregate_id)
    # Store exactly what gets hashed (UUIDs, enums, dates become plain JSON values).
    data = json.loads(canonical_encode(data or {}))

    for attempt in range(1, max_attempts + 1):
        last = await (
            EventLog.filter(aggregate_id=aggregate_id, aggregate_type=aggregate_type)
            .order_by("-version")
            .first()
            .values("version", "hash")
        )
        previous_hash = last["hash"] if last else None
        version = (last["version"] if last else 0) + 1
        occurred_at = utc_timestamp()

        try:
            row = await EventLog.create(
                id=new_event_id(),
                event_type=event_type,
                aggregate_id=aggregate_id,
                aggregate_type=aggregate_type,
                version=version,
                actor_id=actor.id,
                actor_role=actor.role.value,
                data=data,
                previous_hash=previous_hash,
                hash=compute_event_hash(event_type, data, previous_hash, occurred_at),
                occurred_at=occurred_at,
            )
        except IntegrityError as exc:
            if attempt >= max_attempts:
                raise LedgerAppendError(aggregate_type, aggregate_id, attempt) from exc
            log.warning(
                f"Version {version} of {aggregate_type}:{aggregate_id} taken by a concurrent "
                f"writer (attempt {attempt}/{max_attempts}), retrying"
            )
            continue

        return _to_event(row)

    raise LedgerAppendError(aggregate_type, aggregate_id, max_attempts)


async def list_events(aggregate_id, aggregate_type: str) -> List[LedgerEvent]:
    rows = await EventLog.filter(
        aggregate_id=str(aggregate_id), aggregate_type=aggregate_type
    ).order_by("version")
    return [_to_event(row) for row in rows]


async def list_recent_events(limit: int = 50) -> List[LedgerEvent]:
    rows = await EventLog.all().order_by("-recorded_at", "-version").limit(limit)
    return [_to_event(row) for row in rows]


async def has_event(aggregate_id, aggregate_type: str, event_type: str) -> bool:
    return await EventLog.filter(
        aggregate_id=str(aggregate_id), aggregate_type=aggregate_type, event_type=event_type
    ).exists()


async def verify_chain(aggregate_id, aggregate_type: str) -> ChainVerification:
    """
    Walks the aggregate's events in version order and recomputes every link.
    Read-only: a break is reported, never repaired.
    """
    events = await list_events(aggregate_id, aggregate_type)

    for index, event in enumerate(events):
        expected_previous = events[index - 1].hash if index > 0 else None
        if event.previous_hash != expected_previous:
            return ChainVerification(valid=False, broken_at_version=event.version, events_checked=index + 1)

        recomputed = compute_event_hash(event.type, event.data, event.previous_hash, event.occurred_at)
        if event.hash != recomputed:
            return ChainVerification(valid=False, broken_at_version=event.version, events_checked=index + 1)

    return ChainVerification(valid=True, events_checked=len(events))
