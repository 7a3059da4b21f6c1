import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from coopmarket.api.deps import get_principal
from coopmarket.models.order import OrderStatus
from coopmarket.schemas.dispute import DisputeRequest, DisputeResponse
from coopmarket.schemas.jobs import ClaimRequest, DeliveryProof
from coopmarket.schemas.ledger import Actor
from coopmarket.schemas.order import AcceptRequest, OrderPlacementResponse, OrderRequest, OrderResponse, ReasonRequest
from coopmarket.schemas.response import SuccessResponse
from coopmarket.schemas.settlement import EscrowResponse
from coopmarket.services import dispute_service, order_service
from coopmarket.services.settlement import get_escrow_by_order, split_from_escrow

router = APIRouter()
log = logging.getLogger(__name__)


def _order_data(order) -> dict:
    return OrderResponse.from_order(order).model_dump()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(request_data: OrderRequest, actor: Actor = Depends(get_principal)):
    """Places an order and holds its payment in escrow."""
    order, transparency = await order_service.create_order(actor, request_data)
    log.info(f"Order {order.id} placed successfully for customer {actor.id}.")
    data = OrderPlacementResponse(
        order=OrderResponse.from_order(order), transparency=transparency
    ).model_dump()
    return SuccessResponse(data=data)


@router.get("", response_model=SuccessResponse)
async def list_orders_endpoint(
    customer_id: Optional[str] = None,
    restaurant_id: Optional[UUID] = None,
    worker_id: Optional[str] = None,
    order_status: Optional[OrderStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_principal),
):
    orders = await order_service.list_orders(
        customer_id=customer_id,
        restaurant_id=restaurant_id,
        worker_id=worker_id,
        status=order_status,
        limit=limit,
    )
    return SuccessResponse(data=[_order_data(o) for o in orders])


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID, actor: Actor = Depends(get_principal)):
    order = await order_service.get_order(order_id)
    return SuccessResponse(data=_order_data(order))


@router.post("/{order_id}/accept", response_model=SuccessResponse)
async def accept_order_endpoint(
    order_id: UUID, payload: Optional[AcceptRequest] = None, actor: Actor = Depends(get_principal)
):
    """Restaurant accepts the order; the delivery job goes straight onto the board."""
    prep_time = payload.estimated_prep_time if payload else None
    order = await order_service.restaurant_accept(order_id, actor, estimated_prep_time=prep_time)
    return SuccessResponse(data=_order_data(order))


@router.post("/{order_id}/reject", response_model=SuccessResponse)
async def reject_order_endpoint(order_id: UUID, payload: ReasonRequest, actor: Actor = Depends(get_principal)):
    order = await order_service.restaurant_reject(order_id, actor, payload.reason)
    return SuccessResponse(data=_order_data(order))


@router.post("/{order_id}/claim", response_model=SuccessResponse)
async def claim_order_endpoint(
    order_id: UUID, payload: Optional[ClaimRequest] = None, actor: Actor = Depends(get_principal)
):
    location = payload.worker_location if payload else None
    order = await order_service.worker_claim(order_id, actor, worker_location=location)
    return SuccessResponse(data=_order_data(order))


@router.post("/{order_id}/release", response_model=SuccessResponse)
async def release_order_endpoint(order_id: UUID, actor: Actor = Depends(get_principal)):
    order = await order_service.worker_release(order_id, actor)
    return SuccessResponse(data=_order_data(order))


@router.post("/{order_id}/pickup", response_model=SuccessResponse)
async def pickup_order_endpoint(order_id: UUID, actor: Actor = Depends(get_principal)):
    order = await order_service.worker_pickup(order_id, actor)
    return SuccessResponse(data=_order_data(order))


@router.post("/{order_id}/deliver", response_model=SuccessResponse)
async def deliver_order_endpoint(
    order_id: UUID, payload: Optional[DeliveryProof] = None, actor: Actor = Depends(get_principal)
):
    """Confirms delivery and settles the order."""
    order, split = await order_service.confirm_delivery(order_id, actor, payload)
    return SuccessResponse(data={"order": _order_data(order), "settlement": split.model_dump()})


@router.post("/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(order_id: UUID, payload: ReasonRequest, actor: Actor = Depends(get_principal)):
    order = await order_service.cancel_order(order_id, actor, payload.reason)
    return SuccessResponse(data=_order_data(order))


@router.get("/{order_id}/settlement", response_model=SuccessResponse)
async def get_settlement_endpoint(order_id: UUID, actor: Actor = Depends(get_principal)):
    escrow = await get_escrow_by_order(order_id)
    if not escrow:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No payment recorded for this order")

    data = EscrowResponse(
        order_id=str(order_id),
        payment_intent_id=escrow.payment_intent_id,
        amount=escrow.amount,
        currency=escrow.currency,
        status=escrow.status.value,
        split=split_from_escrow(escrow) if escrow.settled_at else None,
        restaurant_transfer_id=escrow.restaurant_transfer_id,
        worker_transfer_id=escrow.worker_transfer_id,
        refund_id=escrow.refund_id,
        refund_amount=escrow.refund_amount,
        settled_at=escrow.settled_at,
    ).model_dump()
    return SuccessResponse(data=data)


@router.post("/{order_id}/disputes", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def raise_dispute_endpoint(order_id: UUID, payload: DisputeRequest, actor: Actor = Depends(get_principal)):
    dispute = await dispute_service.raise_dispute(order_id, actor, payload)
    return SuccessResponse(data=DisputeResponse.from_dispute(dispute).model_dump())
