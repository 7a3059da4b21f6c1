from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    WORKER = "worker"
    COOP_ADMIN = "coop_admin"
    SYSTEM = "system"


class Actor(BaseModel):
    """Principal that caused a change (attached upstream by the auth layer)."""
    id: str
    role: ActorRole


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)


class LedgerEvent(BaseModel):
    """An immutable fact as stored in the event ledger."""
    id: str
    type: str
    aggregate_id: str
    aggregate_type: str
    version: int
    occurred_at: str
    actor: Actor
    data: Dict[str, Any] = Field(default_factory=dict)
    previous_hash: Optional[str] = None
    hash: str

    def envelope(self) -> Dict[str, Any]:
        """Sanitized shape handed to the real-time fan-out layer."""
        return {
            "id": self.id,
            "type": self.type,
            "aggregateId": self.aggregate_id,
            "aggregateType": self.aggregate_type,
            "version": self.version,
            "occurredAt": self.occurred_at,
            "actor": self.actor.model_dump(mode="json"),
            "data": self.data,
        }


class ChainVerification(BaseModel):
    valid: bool
    broken_at_version: Optional[int] = None
    events_checked: int = 0
