"""
Order state machine.

Every command follows the same path: load the order, check the transition table,
write the new status with a compare-and-set on the status that was loaded, then
record the fact in the ledger. A concurrent command that moved the order first
makes the conditional write match no rows and the command fails with
ConcurrentUpdateError instead of overwriting it.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from redis.exceptions import RedisError

from coopmarket.core.errors import (
    ConcurrentUpdateError,
    ConflictError,
    ForbiddenError,
    IllegalTransitionError,
    InvalidRequestError,
    JobAlreadyClaimedError,
    NotFoundError,
)
from coopmarket.events.bus import event_bus
from coopmarket.models.order import MenuItem, Order, OrderStatus, Restaurant, can_transition
from coopmarket.schemas.jobs import DeliveryProof, JobBoardEntry, Location
from coopmarket.schemas.ledger import Actor, ActorRole
from coopmarket.schemas.order import OrderRequest
from coopmarket.schemas.settlement import FeeTransparency, SettlementSplit
from coopmarket.services import settlement
from coopmarket.services.jobboard import get_job_board
from coopmarket.services.parameters import delivery_fee_for, distance_meters, get_governed_parameters

log = logging.getLogger(__name__)

# Once a job is on the board it may hold a listing or a claim lock in Redis.
_ON_BOARD = {OrderStatus.POSTED_TO_BOARD, OrderStatus.WORKER_CLAIMED, OrderStatus.PICKED_UP}


def assert_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise IllegalTransitionError(current, target)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def transition_status(order: Order, target: OrderStatus, **changes) -> Order:
    """Checks the table, then writes ``target`` only if the status is still the one we read."""
    assert_transition(order.status, target)
    now = _now()
    updated = await Order.filter(id=order.id, status=order.status).update(
        status=target, updated_at=now, **changes
    )
    if not updated:
        raise ConcurrentUpdateError(f"Order {order.id} was modified by another request")

    log.info(f"Order {order.id}: {order.status.value} -> {target.value}")
    order.status = target
    order.updated_at = now
    for field, value in changes.items():
        setattr(order, field, value)
    return order


async def load_order(order_id) -> Order:
    order = await Order.get_or_none(id=order_id).prefetch_related("restaurant")
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _require_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        raise ForbiddenError(f"Role {actor.role.value} may not perform this action")


def _require_restaurant_owner(order: Order, actor: Actor) -> None:
    if actor.role != ActorRole.RESTAURANT or order.restaurant.owner_id != actor.id:
        raise ForbiddenError("Only the restaurant that received the order may do this")


def _require_assigned_worker(order: Order, actor: Actor) -> None:
    if actor.role != ActorRole.WORKER or order.worker_id != actor.id:
        raise ForbiddenError("Only the worker assigned to this order may do this")


def _job_entry(order: Order, restaurant: Restaurant) -> JobBoardEntry:
    now = _now()
    prep_minutes = order.estimated_prep_time or restaurant.average_prep_time
    return JobBoardEntry(
        order_id=str(order.id),
        restaurant_name=restaurant.name,
        pickup_location=Location(lat=restaurant.lat, lng=restaurant.lng),
        delivery_location=Location(lat=order.delivery_lat, lng=order.delivery_lng),
        estimated_distance=round(
            distance_meters(restaurant.lat, restaurant.lng, order.delivery_lat, order.delivery_lng)
        ),
        delivery_fee=order.delivery_fee,
        tip=order.tip,
        estimated_ready_at=(now + timedelta(minutes=prep_minutes)).isoformat(),
        posted_at=now.isoformat(),
    )


async def create_order(customer: Actor, request: OrderRequest) -> Tuple[Order, FeeTransparency]:
    """
    Prices the order, holds payment in escrow and returns the order together with
    the split the customer is shown before anything is delivered.
    """
    _require_role(customer, ActorRole.CUSTOMER)

    restaurant = await Restaurant.get_or_none(id=request.restaurant_id)
    if not restaurant:
        raise NotFoundError(f"Restaurant {request.restaurant_id} not found")
    if not restaurant.is_open:
        raise InvalidRequestError("Restaurant is not accepting orders", reason="restaurant_closed")

    menu_item_ids = [item.menu_item_id for item in request.items]
    menu_items = await MenuItem.filter(
        id__in=menu_item_ids, restaurant_id=restaurant.id, is_available=True
    )
    menu_map = {m.id: m for m in menu_items}

    items, subtotal = [], 0
    for item in request.items:
        menu = menu_map.get(item.menu_item_id)
        if not menu:
            raise InvalidRequestError(f"Menu item {item.menu_item_id} is not available")
        subtotal += menu.price * item.quantity
        items.append({
            "menu_item_id": str(menu.id),
            "name": menu.name,
            "quantity": item.quantity,
            "unit_price": menu.price,
        })

    params = await get_governed_parameters()
    address = request.delivery_address
    distance = distance_meters(restaurant.lat, restaurant.lng, address.lat, address.lng)
    delivery_fee = delivery_fee_for(distance, params)

    order = await Order.create(
        customer_id=customer.id,
        restaurant=restaurant,
        items=items,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tip=request.tip,
        total=subtotal + delivery_fee + request.tip,
        status=OrderStatus.CREATED,
        delivery_street=address.street,
        delivery_city=address.city,
        delivery_postal_code=address.postal_code,
        delivery_lat=address.lat,
        delivery_lng=address.lng,
        estimated_prep_time=restaurant.average_prep_time,
    )
    await event_bus.emit("order.created", order.id, "order", customer, {
        "customerId": customer.id,
        "restaurantId": str(restaurant.id),
        "items": items,
        "subtotal": subtotal,
        "deliveryFee": delivery_fee,
        "tip": order.tip,
        "total": order.total,
        "deliveryAddress": address.model_dump(),
    })

    escrow = await settlement.hold_payment(order, customer)
    await transition_status(order, OrderStatus.PAYMENT_HELD)
    await event_bus.emit("order.payment_held", order.id, "order", customer, {
        "paymentIntentId": escrow.payment_intent_id,
        "amount": escrow.amount,
    })

    split = settlement.compute_split(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tip=order.tip,
        pool_rate=params.pool_contribution_rate,
        infra_rate=params.infra_fee_rate,
    )
    transparency = FeeTransparency(
        restaurant_receives=split.restaurant_payout,
        worker_receives=split.worker_payout,
        coop_infra_fee=split.infra_fee,
        pool_contribution=split.pool_contribution,
    )
    log.info(f"Order {order.id} created for customer {customer.id}, total={order.total}")
    return order, transparency


async def restaurant_accept(order_id, actor: Actor, estimated_prep_time: Optional[int] = None) -> Order:
    """Accepting an order immediately publishes it to the job board."""
    order = await load_order(order_id)
    _require_restaurant_owner(order, actor)

    prep_time = estimated_prep_time or order.restaurant.average_prep_time
    await transition_status(
        order,
        OrderStatus.RESTAURANT_ACCEPTED,
        restaurant_accepted_at=_now(),
        estimated_prep_time=prep_time,
    )
    await event_bus.emit("order.restaurant_accepted", order.id, "order", actor, {
        "restaurantId": str(order.restaurant_id),
        "estimatedPrepTime": prep_time,
    })

    return await post_to_board(order, actor)


async def post_to_board(order: Order, actor: Actor) -> Order:
    await transition_status(order, OrderStatus.POSTED_TO_BOARD)

    entry = _job_entry(order, order.restaurant)
    await event_bus.emit("order.posted_to_board", order.id, "order", actor, {
        "deliveryFee": entry.delivery_fee,
        "tip": entry.tip,
        "estimatedDistance": entry.estimated_distance,
        "estimatedReadyAt": entry.estimated_ready_at,
    })
    await get_job_board().post(entry)
    return order


async def restaurant_reject(order_id, actor: Actor, reason: str) -> Order:
    order = await load_order(order_id)
    _require_restaurant_owner(order, actor)

    await transition_status(order, OrderStatus.RESTAURANT_REJECTED)
    await event_bus.emit("order.restaurant_rejected", order.id, "order", actor, {"reason": reason})

    await settlement.refund_payment(order.id, reason=f"restaurant_rejected: {reason}", actor=actor)

    await transition_status(order, OrderStatus.CANCELLED, cancelled_at=_now(), cancellation_reason=reason)
    await event_bus.emit("order.cancelled", order.id, "order", actor, {
        "reason": reason,
        "cancelledBy": actor.id,
        "previousStatus": OrderStatus.RESTAURANT_REJECTED.value,
    })
    return order


async def worker_claim(order_id, worker: Actor, worker_location: Optional[Location] = None) -> Order:
    """
    The Redis claim decides the winner; only the winner moves the order.
    A retry by the worker who already holds the order returns it unchanged.
    """
    _require_role(worker, ActorRole.WORKER)
    order = await load_order(order_id)

    if order.status == OrderStatus.WORKER_CLAIMED and order.worker_id == worker.id:
        log.info(f"Order {order.id} already claimed by worker {worker.id}, returning current state")
        return order

    assert_transition(order.status, OrderStatus.WORKER_CLAIMED)

    board = get_job_board()
    if not await board.claim(order.id, worker.id):
        raise JobAlreadyClaimedError(f"Order {order.id} has already been claimed by another worker")

    try:
        await transition_status(
            order, OrderStatus.WORKER_CLAIMED, worker_id=worker.id, worker_claimed_at=_now()
        )
    except ConflictError:
        await board.release(order.id)
        raise

    await event_bus.emit("order.worker_claimed", order.id, "order", worker, {
        "workerId": worker.id,
        "workerLocation": worker_location.model_dump() if worker_location else None,
    })
    return order


async def worker_release(order_id, worker: Actor) -> Order:
    """Hands a claimed job back to the board for another worker."""
    order = await load_order(order_id)
    _require_assigned_worker(order, worker)

    await transition_status(order, OrderStatus.POSTED_TO_BOARD, worker_id=None, worker_claimed_at=None)

    board = get_job_board()
    await board.release(order.id)
    await board.post(_job_entry(order, order.restaurant))

    await event_bus.emit("order.worker_released", order.id, "order", worker, {"workerId": worker.id})
    return order


async def worker_pickup(order_id, worker: Actor) -> Order:
    order = await load_order(order_id)
    _require_assigned_worker(order, worker)

    await transition_status(order, OrderStatus.PICKED_UP, picked_up_at=_now())
    await event_bus.emit("order.picked_up", order.id, "order", worker, {"workerId": worker.id})
    return order


async def confirm_delivery(order_id, worker: Actor, proof: Optional[DeliveryProof] = None) -> Tuple[Order, SettlementSplit]:
    """Marks the order delivered and settles it in the same command."""
    order = await load_order(order_id)
    _require_assigned_worker(order, worker)
    proof = proof or DeliveryProof()

    await transition_status(
        order,
        OrderStatus.DELIVERED,
        delivered_at=_now(),
        proof_photo_url=proof.proof_photo_url,
        signature_confirmation=proof.signature_confirmation,
    )
    await event_bus.emit("order.delivered", order.id, "order", worker, {
        "workerId": worker.id,
        "proofPhotoUrl": proof.proof_photo_url,
        "signatureConfirmation": proof.signature_confirmation,
        "workerLocation": proof.worker_location.model_dump() if proof.worker_location else None,
    })

    split = await settlement.settle(order.id)

    # The claim lock also expires on its own TTL.
    try:
        await get_job_board().release(order.id)
    except RedisError as exc:
        log.warning(f"Order {order.id} settled but its claim lock was not released: {exc}")

    return await load_order(order.id), split


async def cancel_order(order_id, actor: Actor, reason: str) -> Order:
    order = await load_order(order_id)

    allowed = (
        actor.role == ActorRole.COOP_ADMIN
        or (actor.role == ActorRole.CUSTOMER and order.customer_id == actor.id)
        or (actor.role == ActorRole.RESTAURANT and order.restaurant.owner_id == actor.id)
    )
    if not allowed:
        raise ForbiddenError("Not allowed to cancel this order")

    previous_status = order.status
    await transition_status(order, OrderStatus.CANCELLED, cancelled_at=_now(), cancellation_reason=reason)
    await event_bus.emit("order.cancelled", order.id, "order", actor, {
        "reason": reason,
        "cancelledBy": actor.id,
        "previousStatus": previous_status.value,
    })

    if previous_status in _ON_BOARD:
        await get_job_board().remove(order.id)

    if previous_status != OrderStatus.CREATED:
        await settlement.refund_payment(order.id, reason=f"order_cancelled: {reason}", actor=actor)

    return order


async def get_order(order_id) -> Order:
    return await load_order(order_id)


async def list_orders(
    customer_id: Optional[str] = None,
    restaurant_id: Optional[UUID] = None,
    worker_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    limit: int = 50,
) -> List[Order]:
    query = Order.all()
    if customer_id:
        query = query.filter(customer_id=customer_id)
    if restaurant_id:
        query = query.filter(restaurant_id=restaurant_id)
    if worker_id:
        query = query.filter(worker_id=worker_id)
    if status:
        query = query.filter(status=status)
    return await query.order_by("-created_at").limit(limit)
