from unittest.mock import patch

import pytest

from coopmarket.consumers.settlement_reconciler import reconcile_unsynced_settlements
from coopmarket.events import ledger
from coopmarket.events.bus import event_bus
from coopmarket.models.escrow import EscrowRecord, EscrowStatus
from coopmarket.models.order import Order, OrderStatus
from coopmarket.services import order_service

SETTLEMENT_EVENTS = [
    ("order.settled", "order"),
    ("payment.restaurant_transferred", "payment"),
    ("payment.worker_transferred", "payment"),
    ("payment.pool_contribution", "payment"),
]


async def _deliver_with_crash(order, actors, crash_on: str):
    """Settlement commits, then the process 'dies' when ``crash_on`` is about to be appended."""
    await order_service.restaurant_accept(order.id, actors.restaurant)
    await order_service.worker_claim(order.id, actors.worker)
    await order_service.worker_pickup(order.id, actors.worker)

    original_emit = event_bus.emit

    async def dying_emit(event_type, *args, **kwargs):
        if event_type == crash_on:
            raise RuntimeError("process killed")
        return await original_emit(event_type, *args, **kwargs)

    with patch.object(event_bus, "emit", new=dying_emit):
        with pytest.raises(RuntimeError):
            await order_service.confirm_delivery(order.id, actors.worker)


async def _counts(escrow):
    counts = {}
    for event_type, aggregate_type in SETTLEMENT_EVENTS:
        aggregate_id = escrow.order_id if aggregate_type == "order" else escrow.id
        events = await ledger.list_events(aggregate_id, aggregate_type)
        counts[event_type] = sum(1 for e in events if e.type == event_type)
    return counts


class TestSettlementReconciler:
    @pytest.mark.asyncio
    async def test_money_moves_even_if_events_are_lost(self, place_order, actors):
        order = await place_order()
        await _deliver_with_crash(order, actors, crash_on="order.settled")

        assert (await Order.get(id=order.id)).status == OrderStatus.SETTLED
        escrow = await EscrowRecord.get(order_id=order.id)
        assert escrow.status == EscrowStatus.SETTLED
        assert not escrow.ledger_synced

    @pytest.mark.asyncio
    async def test_missing_events_are_appended_once(self, place_order, actors):
        order = await place_order()
        await _deliver_with_crash(order, actors, crash_on="order.settled")

        assert await reconcile_unsynced_settlements(grace_seconds=0) == 1

        escrow = await EscrowRecord.get(order_id=order.id)
        assert escrow.ledger_synced
        assert await _counts(escrow) == {event_type: 1 for event_type, _ in SETTLEMENT_EVENTS}
        assert (await ledger.verify_chain(order.id, "order")).valid

        assert await reconcile_unsynced_settlements(grace_seconds=0) == 0

    @pytest.mark.asyncio
    async def test_partially_emitted_settlement_is_completed(self, place_order, actors):
        order = await place_order()
        await _deliver_with_crash(order, actors, crash_on="payment.worker_transferred")

        escrow = await EscrowRecord.get(order_id=order.id)
        before = await _counts(escrow)
        assert before["order.settled"] == 1
        assert before["payment.worker_transferred"] == 0

        await reconcile_unsynced_settlements(grace_seconds=0)

        assert await _counts(escrow) == {event_type: 1 for event_type, _ in SETTLEMENT_EVENTS}

    @pytest.mark.asyncio
    async def test_recent_settlements_are_left_alone(self, place_order, actors):
        order = await place_order()
        await _deliver_with_crash(order, actors, crash_on="order.settled")

        assert await reconcile_unsynced_settlements(grace_seconds=3600) == 0
        assert not (await EscrowRecord.get(order_id=order.id)).ledger_synced

    @pytest.mark.asyncio
    async def test_synced_settlements_are_skipped(self, place_order, deliver_order):
        await deliver_order(await place_order())
        assert await reconcile_unsynced_settlements(grace_seconds=0) == 0
