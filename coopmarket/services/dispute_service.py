import logging
from datetime import datetime, timezone
from typing import Optional

from coopmarket.core.errors import DisputeConflictError, ForbiddenError, InvalidRequestError, NotFoundError
from coopmarket.events.bus import event_bus
from coopmarket.models.dispute import Dispute, DisputeResolution
from coopmarket.models.escrow import EscrowStatus
from coopmarket.models.order import OrderStatus
from coopmarket.schemas.dispute import DisputeRequest
from coopmarket.schemas.ledger import Actor, ActorRole
from coopmarket.services import settlement
from coopmarket.services.order_service import load_order, transition_status

log = logging.getLogger(__name__)


async def raise_dispute(order_id, actor: Actor, request: DisputeRequest) -> Dispute:
    """Opens a dispute on a delivered or settled order. At most one may be open per order."""
    order = await load_order(order_id)

    involved = (
        actor.role == ActorRole.COOP_ADMIN
        or (actor.role == ActorRole.CUSTOMER and order.customer_id == actor.id)
        or (actor.role == ActorRole.RESTAURANT and order.restaurant.owner_id == actor.id)
        or (actor.role == ActorRole.WORKER and order.worker_id == actor.id)
    )
    if not involved:
        raise ForbiddenError("Only parties to the order may raise a dispute")

    if await Dispute.filter(order_id=order.id, resolution__isnull=True).exists():
        raise DisputeConflictError(f"Order {order.id} already has an open dispute")

    await transition_status(order, OrderStatus.DISPUTED)
    dispute = await Dispute.create(
        order_id=order.id,
        raised_by=actor.id,
        raised_by_role=actor.role.value,
        dispute_type=request.dispute_type,
        description=request.description,
        evidence=request.evidence,
    )

    await event_bus.emit("order.disputed", order.id, "order", actor, {
        "disputeId": str(dispute.id),
        "disputeType": request.dispute_type.value,
        "description": request.description,
        "raisedBy": actor.id,
    })
    log.info(f"Dispute {dispute.id} raised on order {order.id} by {actor.role.value} {actor.id}")
    return dispute


async def resolve_dispute(
    dispute_id,
    actor: Actor,
    resolution: DisputeResolution,
    refund_amount: Optional[int] = None,
    notes: Optional[str] = None,
) -> Dispute:
    """
    A full refund returns the escrow and leaves the order dispute_resolved.
    Any other outcome closes the order as settled: through the settlement engine
    when it was disputed before payout, otherwise by status alone. A partial refund
    is issued after that.
    """
    if actor.role != ActorRole.COOP_ADMIN:
        raise ForbiddenError("Only the cooperative may resolve disputes")
    if resolution == DisputeResolution.PARTIAL_REFUND and not refund_amount:
        raise InvalidRequestError("A partial refund needs a positive refund_amount")

    dispute = await Dispute.get_or_none(id=dispute_id)
    if not dispute:
        raise NotFoundError(f"Dispute {dispute_id} not found")
    if dispute.resolution is not None:
        raise DisputeConflictError(f"Dispute {dispute.id} is already resolved")

    order = await load_order(dispute.order_id)
    await transition_status(order, OrderStatus.DISPUTE_RESOLVED)

    now = datetime.now(timezone.utc)
    amount = refund_amount if resolution == DisputeResolution.PARTIAL_REFUND else None
    updated = await Dispute.filter(id=dispute.id, resolution__isnull=True).update(
        resolution=resolution, resolved_by=actor.id, refund_amount=amount, notes=notes, resolved_at=now
    )
    if not updated:
        raise DisputeConflictError(f"Dispute {dispute.id} was resolved by another request")

    await event_bus.emit("order.dispute_resolved", order.id, "order", actor, {
        "disputeId": str(dispute.id),
        "resolution": resolution.value,
        "refundAmount": amount,
        "notes": notes,
    })

    if resolution == DisputeResolution.FULL_REFUND:
        await settlement.refund_payment(order.id, reason=f"dispute_full_refund: {dispute.id}", actor=actor)
    else:
        escrow = await settlement.get_escrow_by_order(order.id)
        if escrow is not None and escrow.status == EscrowStatus.AUTHORIZED:
            await settlement.settle(order.id)
        else:
            await transition_status(order, OrderStatus.SETTLED)
            await event_bus.emit("order.settled", order.id, "order", actor, {
                "reason": "dispute_resolved",
                "resolution": resolution.value,
            })

        if amount:
            await settlement.refund_payment(
                order.id, reason=f"dispute_partial_refund: {dispute.id}", amount=amount, actor=actor
            )

    log.info(f"Dispute {dispute.id} resolved as {resolution.value} by {actor.id}")
    return await Dispute.get(id=dispute.id)
