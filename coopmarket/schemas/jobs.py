import uuid
from typing import Optional

from pydantic import BaseModel, Field


class Location(BaseModel):
    lat: float
    lng: float


class JobBoardEntry(BaseModel):
    """A delivery job visible to every online worker until someone claims it."""
    order_id: str
    restaurant_name: str
    pickup_location: Location
    delivery_location: Location
    estimated_distance: float = Field(..., description="Restaurant to customer, in metres.")
    delivery_fee: int
    tip: int = 0
    estimated_ready_at: str
    posted_at: str


class ClaimRequest(BaseModel):
    worker_location: Optional[Location] = None


class DeliveryProof(BaseModel):
    worker_location: Optional[Location] = None
    proof_photo_url: Optional[str] = None
    signature_confirmation: bool = False


class ClaimResponse(BaseModel):
    order_id: uuid.UUID
    status: str
    worker_id: str
