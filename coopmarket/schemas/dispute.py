from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field

from coopmarket.models.dispute import Dispute, DisputeResolution, DisputeType


class DisputeRequest(BaseModel):
    dispute_type: DisputeType
    description: str = Field(..., min_length=1, max_length=2000)
    evidence: List[str] = Field(default_factory=list, description="URLs of photos or documents")


class ResolveDisputeRequest(BaseModel):
    resolution: DisputeResolution
    refund_amount: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = None


class DisputeResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    raised_by: str
    raised_by_role: str
    dispute_type: DisputeType
    description: str
    evidence: List[str]
    resolution: Optional[DisputeResolution] = None
    resolved_by: Optional[str] = None
    refund_amount: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_dispute(cls, dispute: Dispute) -> "DisputeResponse":
        return cls(
            id=dispute.id,
            order_id=dispute.order_id,
            raised_by=dispute.raised_by,
            raised_by_role=dispute.raised_by_role,
            dispute_type=dispute.dispute_type,
            description=dispute.description,
            evidence=dispute.evidence or [],
            resolution=dispute.resolution,
            resolved_by=dispute.resolved_by,
            refund_amount=dispute.refund_amount,
            notes=dispute.notes,
            created_at=dispute.created_at,
            resolved_at=dispute.resolved_at,
        )
