from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field

from coopmarket.models.order import Order, OrderStatus
from coopmarket.schemas.settlement import FeeTransparency


class OrderItemRequest(BaseModel):
    """Schema for a single item in the order request."""
    menu_item_id: uuid.UUID
    quantity: int = Field(..., gt=0)


class DeliveryAddress(BaseModel):
    street: str
    city: str
    postal_code: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class OrderRequest(BaseModel):
    """Schema for the full order placement request body."""
    restaurant_id: uuid.UUID
    items: List[OrderItemRequest] = Field(..., min_length=1)
    delivery_address: DeliveryAddress
    tip: int = Field(default=0, ge=0)


class AcceptRequest(BaseModel):
    estimated_prep_time: Optional[int] = Field(default=None, gt=0, description="Minutes")


class ReasonRequest(BaseModel):
    """Body for reject and cancel commands."""
    reason: str = Field(..., min_length=1, max_length=500)


class OrderResponse(BaseModel):
    id: uuid.UUID
    customer_id: str
    restaurant_id: uuid.UUID
    worker_id: Optional[str] = None
    status: OrderStatus
    items: List[Dict[str, Any]]
    subtotal: int
    delivery_fee: int
    tip: int
    total: int
    delivery_address: DeliveryAddress
    estimated_prep_time: Optional[int] = None
    restaurant_accepted_at: Optional[datetime] = None
    worker_claimed_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            customer_id=order.customer_id,
            restaurant_id=order.restaurant_id,
            worker_id=order.worker_id,
            status=order.status,
            items=order.items,
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee,
            tip=order.tip,
            total=order.total,
            delivery_address=DeliveryAddress(
                street=order.delivery_street,
                city=order.delivery_city,
                postal_code=order.delivery_postal_code,
                lat=order.delivery_lat,
                lng=order.delivery_lng,
            ),
            estimated_prep_time=order.estimated_prep_time,
            restaurant_accepted_at=order.restaurant_accepted_at,
            worker_claimed_at=order.worker_claimed_at,
            picked_up_at=order.picked_up_at,
            delivered_at=order.delivered_at,
            settled_at=order.settled_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            created_at=order.created_at,
        )


class OrderPlacementResponse(BaseModel):
    """Response schema for a newly placed order: the order plus where its money goes."""
    order: OrderResponse
    transparency: FeeTransparency
