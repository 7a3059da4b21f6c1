import pytest

from coopmarket.core.errors import DisputeConflictError, ForbiddenError, IllegalTransitionError, InvalidRequestError
from coopmarket.events import ledger
from coopmarket.models.dispute import DisputeResolution, DisputeType
from coopmarket.models.escrow import EscrowRecord, EscrowStatus
from coopmarket.models.order import Order, OrderStatus
from coopmarket.models.pool import PoolState
from coopmarket.schemas.dispute import DisputeRequest
from coopmarket.services import dispute_service, settlement

COMPLAINT = DisputeRequest(dispute_type=DisputeType.MISSING_ITEMS, description="Lassi was missing")


class TestRaiseDispute:
    @pytest.mark.asyncio
    async def test_customer_disputes_settled_order(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)

        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

        assert dispute.resolution is None
        assert (await Order.get(id=order.id)).status == OrderStatus.DISPUTED
        assert await ledger.has_event(order.id, "order", "order.disputed")

    @pytest.mark.asyncio
    async def test_one_open_dispute_per_order(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

        with pytest.raises(DisputeConflictError):
            await dispute_service.raise_dispute(order.id, actors.restaurant, COMPLAINT)

    @pytest.mark.asyncio
    async def test_undelivered_orders_cannot_be_disputed(self, place_order, actors):
        order = await place_order()
        with pytest.raises(IllegalTransitionError):
            await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

    @pytest.mark.asyncio
    async def test_outsiders_cannot_dispute(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        with pytest.raises(ForbiddenError):
            await dispute_service.raise_dispute(order.id, actors.other_customer, COMPLAINT)


class TestResolveDispute:
    @pytest.mark.asyncio
    async def test_full_refund(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

        resolved = await dispute_service.resolve_dispute(dispute.id, actors.admin, DisputeResolution.FULL_REFUND)

        assert resolved.resolution == DisputeResolution.FULL_REFUND
        assert resolved.resolved_by == "admin-1"
        assert (await Order.get(id=order.id)).status == OrderStatus.DISPUTE_RESOLVED
        assert (await EscrowRecord.get(order_id=order.id)).status == EscrowStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_no_refund_closes_settled_order_without_moving_money(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        balance = (await PoolState.get(id=1)).balance
        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

        await dispute_service.resolve_dispute(dispute.id, actors.admin, DisputeResolution.NO_REFUND, notes="Photo shows lassi")

        assert (await Order.get(id=order.id)).status == OrderStatus.SETTLED
        assert (await PoolState.get(id=1)).balance == balance
        types = [e.type for e in await ledger.list_events(order.id, "order")]
        assert types[-3:] == ["order.disputed", "order.dispute_resolved", "order.settled"]

    @pytest.mark.asyncio
    async def test_partial_refund(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

        resolved = await dispute_service.resolve_dispute(
            dispute.id, actors.admin, DisputeResolution.PARTIAL_REFUND, refund_amount=5000
        )

        assert resolved.refund_amount == 5000
        escrow = await EscrowRecord.get(order_id=order.id)
        assert escrow.status == EscrowStatus.PARTIALLY_REFUNDED
        assert escrow.refund_amount == 5000
        assert (await Order.get(id=order.id)).status == OrderStatus.SETTLED

    @pytest.mark.asyncio
    async def test_partial_refund_needs_an_amount(self, db, actors):
        with pytest.raises(InvalidRequestError):
            await dispute_service.resolve_dispute("any", actors.admin, DisputeResolution.PARTIAL_REFUND)

    @pytest.mark.asyncio
    async def test_only_the_coop_resolves(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)

        with pytest.raises(ForbiddenError):
            await dispute_service.resolve_dispute(dispute.id, actors.customer, DisputeResolution.FULL_REFUND)

    @pytest.mark.asyncio
    async def test_cannot_resolve_twice(self, place_order, deliver_order, actors):
        order = await place_order()
        await deliver_order(order)
        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)
        await dispute_service.resolve_dispute(dispute.id, actors.admin, DisputeResolution.NO_REFUND)

        with pytest.raises(DisputeConflictError):
            await dispute_service.resolve_dispute(dispute.id, actors.admin, DisputeResolution.NO_REFUND)

    @pytest.mark.asyncio
    async def test_settle_after_partial_refund_returns_stored_split(self, place_order, deliver_order, actors):
        order = await place_order()
        order, split = await deliver_order(order)
        balance = (await PoolState.get(id=1)).balance
        dispute = await dispute_service.raise_dispute(order.id, actors.customer, COMPLAINT)
        await dispute_service.resolve_dispute(
            dispute.id, actors.admin, DisputeResolution.PARTIAL_REFUND, refund_amount=100
        )

        again = await settlement.settle(order.id)

        assert again == split
        assert (await EscrowRecord.get(order_id=order.id)).status == EscrowStatus.PARTIALLY_REFUNDED
        assert (await PoolState.get(id=1)).balance == balance
