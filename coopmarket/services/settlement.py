"""
Settlement engine: escrow hold, payout split, and the one multi-row transaction
in the system.

settle() writes escrow, order status, pool balance, pool ledger and worker daily
earnings atomically, and only then appends the ledger events. The events are not
part of that transaction: if the process dies in between, the escrow stays
``ledger_synced=False`` and the settlement reconciler appends the missing facts.
"""
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from coopmarket.core.config import CURRENCY
from coopmarket.core.errors import (
    ConcurrentUpdateError,
    ConflictError,
    IllegalTransitionError,
    InvalidRequestError,
    NotFoundError,
)
from coopmarket.events import ledger
from coopmarket.events.bus import event_bus
from coopmarket.models.escrow import EscrowRecord, EscrowStatus
from coopmarket.models.order import Order, OrderStatus, can_transition
from coopmarket.models.pool import POOL_STATE_ID, PoolLedgerEntry, PoolState, WorkerDailyEarnings
from coopmarket.schemas.ledger import SYSTEM_ACTOR, Actor
from coopmarket.schemas.settlement import SettlementSplit
from coopmarket.services.parameters import get_governed_parameters

log = logging.getLogger(__name__)


def compute_split(subtotal: int, delivery_fee: int, tip: int, pool_rate: int, infra_rate: int) -> SettlementSplit:
    """
    Pool and infrastructure shares are floored; the worker gets the remainder of
    the delivery fee, so the three parts always add back up to it exactly.
    """
    if delivery_fee < 0 or subtotal < 0 or tip < 0:
        raise InvalidRequestError("Amounts must not be negative")
    if pool_rate < 0 or infra_rate < 0 or pool_rate + infra_rate > 100:
        raise InvalidRequestError("Fee rates must be between 0 and 100 percent in total")

    pool_contribution = delivery_fee * pool_rate // 100
    infra_fee = delivery_fee * infra_rate // 100
    worker_delivery_pay = delivery_fee - pool_contribution - infra_fee

    return SettlementSplit(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tip=tip,
        pool_rate=pool_rate,
        infra_rate=infra_rate,
        pool_contribution=pool_contribution,
        infra_fee=infra_fee,
        worker_delivery_pay=worker_delivery_pay,
        worker_payout=worker_delivery_pay + tip,
        restaurant_payout=subtotal,
    )


def split_from_escrow(escrow: EscrowRecord) -> SettlementSplit:
    return SettlementSplit(
        subtotal=escrow.subtotal,
        delivery_fee=escrow.delivery_fee,
        tip=escrow.tip_amount,
        pool_rate=escrow.pool_rate,
        infra_rate=escrow.infra_rate,
        pool_contribution=escrow.pool_contribution,
        infra_fee=escrow.infra_fee,
        worker_delivery_pay=escrow.worker_delivery_pay,
        worker_payout=escrow.worker_payout,
        restaurant_payout=escrow.restaurant_payout,
    )


def _sim_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


async def hold_payment(order: Order, actor: Actor, conn: Any = None) -> EscrowRecord:
    """Authorizes the order total and keeps it in escrow until settlement or refund."""
    escrow = await EscrowRecord.create(
        order_id=order.id,
        payment_intent_id=_sim_id("pi_sim"),
        amount=order.total,
        currency=CURRENCY,
        status=EscrowStatus.AUTHORIZED,
        using_db=conn,
    )

    await event_bus.emit(
        "payment.authorized",
        aggregate_id=escrow.id,
        aggregate_type="payment",
        actor=actor,
        data={
            "orderId": str(order.id),
            "paymentIntentId": escrow.payment_intent_id,
            "amount": escrow.amount,
            "currency": escrow.currency,
            "customerId": order.customer_id,
        },
    )
    log.info(f"Payment held in escrow: order={order.id} amount={escrow.amount}")
    return escrow


async def _credit_pool(conn: Any, order_id: str, amount: int, now: datetime) -> int:
    updated = await PoolState.filter(id=POOL_STATE_ID).using_db(conn).update(
        balance=F("balance") + amount,
        total_contributions=F("total_contributions") + amount,
        last_updated=now,
    )
    if not updated:
        await PoolState.create(
            id=POOL_STATE_ID, balance=amount, total_contributions=amount, using_db=conn
        )

    pool = await PoolState.get(id=POOL_STATE_ID).using_db(conn)
    await PoolLedgerEntry.create(
        transaction_type="contribution",
        amount=amount,
        balance_after=pool.balance,
        order_id=order_id,
        description=f"Pool contribution from order {order_id}",
        using_db=conn,
    )
    return pool.balance


async def _record_worker_earnings(conn: Any, worker_id: str, day: date, split: SettlementSplit, now: datetime):
    updated = await WorkerDailyEarnings.filter(worker_id=worker_id, date=day).using_db(conn).update(
        deliveries_completed=F("deliveries_completed") + 1,
        delivery_fees=F("delivery_fees") + split.worker_delivery_pay,
        tips=F("tips") + split.tip,
        total_earnings=F("total_earnings") + split.worker_payout,
        updated_at=now,
    )
    if not updated:
        await WorkerDailyEarnings.create(
            worker_id=worker_id,
            date=day,
            deliveries_completed=1,
            delivery_fees=split.worker_delivery_pay,
            tips=split.tip,
            total_earnings=split.worker_payout,
            using_db=conn,
        )


async def settle(order_id) -> SettlementSplit:
    """
    Pays out a delivered order exactly once.

    A second call (retry, duplicate delivery confirmation, reconciler) finds the
    escrow already settled and returns the stored split without touching money.
    """
    now = datetime.now(timezone.utc)

    async with in_transaction() as conn:
        escrow = await (
            EscrowRecord.filter(order_id=order_id).using_db(conn).select_for_update().first()
        )
        if escrow is None:
            raise NotFoundError(f"Escrow record for order {order_id} not found")

        # A refund issued after payout changes the status but not the stored split.
        if escrow.status == EscrowStatus.SETTLED or escrow.settled_at is not None:
            log.info(f"Order {order_id} already settled; returning stored split")
            return split_from_escrow(escrow)

        if escrow.status != EscrowStatus.AUTHORIZED:
            raise ConflictError(f"Cannot settle escrow in status {escrow.status.value}", reason="escrow_not_settleable")

        order = await Order.filter(id=order_id).using_db(conn).select_for_update().first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not can_transition(order.status, OrderStatus.SETTLED):
            raise IllegalTransitionError(order.status, OrderStatus.SETTLED)
        if not order.worker_id:
            raise ConflictError("No worker assigned to this order", reason="no_worker_assigned")

        params = await get_governed_parameters(conn)
        split = compute_split(
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee,
            tip=order.tip,
            pool_rate=params.pool_contribution_rate,
            infra_rate=params.infra_fee_rate,
        )

        updated = await EscrowRecord.filter(id=escrow.id, status=EscrowStatus.AUTHORIZED).using_db(conn).update(
            status=EscrowStatus.SETTLED,
            **split.model_dump(exclude={"tip"}),
            tip_amount=split.tip,
            worker_id=order.worker_id,
            restaurant_transfer_id=_sim_id("tr_sim_rest"),
            worker_transfer_id=_sim_id("tr_sim_wrkr"),
            settled_at=now,
            ledger_synced=False,
            updated_at=now,
        )
        if not updated:
            raise ConcurrentUpdateError(f"Escrow for order {order_id} changed during settlement")

        updated = await Order.filter(id=order.id, status=order.status).using_db(conn).update(
            status=OrderStatus.SETTLED, settled_at=now, updated_at=now
        )
        if not updated:
            raise ConcurrentUpdateError(f"Order {order_id} changed during settlement")

        await _credit_pool(conn, str(order.id), split.pool_contribution, now)
        await _record_worker_earnings(conn, order.worker_id, now.date(), split, now)

    log.info(
        f"Payment settled: order={order_id} restaurant={split.restaurant_payout} "
        f"worker={split.worker_payout} infra={split.infra_fee} pool={split.pool_contribution}"
    )

    await emit_settlement_events(escrow.id)
    return split


async def emit_settlement_events(escrow_id, skip_existing: bool = False) -> int:
    """
    Appends one ledger event per settled fact and marks the escrow synced.
    With skip_existing, facts already present in the ledger are not repeated.
    Returns the number of events appended.
    """
    escrow = await EscrowRecord.get(id=escrow_id)
    order = await Order.get(id=escrow.order_id)
    split = split_from_escrow(escrow)
    pool_line = await PoolLedgerEntry.filter(
        order_id=str(order.id), transaction_type="contribution"
    ).first()

    facts = [
        ("order.settled", str(order.id), "order", {
            "restaurantPayout": split.restaurant_payout,
            "workerPayout": split.worker_payout,
            "coopInfraFee": split.infra_fee,
            "poolContribution": split.pool_contribution,
            "tip": split.tip,
            "paymentCaptureId": escrow.payment_intent_id,
            "settledAt": escrow.settled_at.isoformat() if escrow.settled_at else None,
        }),
        ("payment.restaurant_transferred", str(escrow.id), "payment", {
            "orderId": str(order.id),
            "restaurantId": str(order.restaurant_id),
            "amount": split.restaurant_payout,
            "transferId": escrow.restaurant_transfer_id,
        }),
        ("payment.worker_transferred", str(escrow.id), "payment", {
            "orderId": str(order.id),
            "workerId": escrow.worker_id,
            "amount": split.worker_payout,
            "transferId": escrow.worker_transfer_id,
            "includesTip": split.tip > 0,
            "tipAmount": split.tip,
        }),
        ("payment.pool_contribution", str(escrow.id), "payment", {
            "orderId": str(order.id),
            "amount": split.pool_contribution,
            "poolBalanceAfter": pool_line.balance_after if pool_line else None,
        }),
    ]

    appended = 0
    for event_type, aggregate_id, aggregate_type, data in facts:
        if skip_existing and await ledger.has_event(aggregate_id, aggregate_type, event_type):
            continue
        await event_bus.emit(event_type, aggregate_id, aggregate_type, SYSTEM_ACTOR, data)
        appended += 1

    await EscrowRecord.filter(id=escrow.id).update(ledger_synced=True)
    return appended


async def refund_payment(order_id, reason: str, amount: Optional[int] = None, actor: Actor = SYSTEM_ACTOR) -> Optional[EscrowRecord]:
    """Refunds the escrow in full, or partially when ``amount`` is below the held total."""
    escrow = await EscrowRecord.get_or_none(order_id=order_id)
    if escrow is None:
        log.warning(f"No escrow record found for refund of order {order_id}")
        return None
    if escrow.status == EscrowStatus.REFUNDED:
        log.warning(f"Escrow for order {order_id} already refunded")
        return None

    refund_amount = escrow.amount if amount is None else min(amount, escrow.amount)
    if refund_amount <= 0:
        raise InvalidRequestError("Refund amount must be positive")
    status = EscrowStatus.REFUNDED if refund_amount >= escrow.amount else EscrowStatus.PARTIALLY_REFUNDED
    refund_id = _sim_id("re_sim")

    updated = await EscrowRecord.filter(id=escrow.id, status=escrow.status).update(
        status=status,
        refund_id=refund_id,
        refund_amount=refund_amount,
        updated_at=datetime.now(timezone.utc),
    )
    if not updated:
        raise ConcurrentUpdateError(f"Escrow for order {order_id} changed during refund")

    await event_bus.emit(
        "payment.refunded",
        aggregate_id=escrow.id,
        aggregate_type="payment",
        actor=actor,
        data={"orderId": str(order_id), "refundId": refund_id, "amount": refund_amount, "reason": reason},
    )
    log.info(f"Payment refunded: order={order_id} amount={refund_amount} reason={reason}")

    escrow.status, escrow.refund_id, escrow.refund_amount = status, refund_id, refund_amount
    return escrow


async def get_escrow_by_order(order_id) -> Optional[EscrowRecord]:
    return await EscrowRecord.get_or_none(order_id=order_id)
