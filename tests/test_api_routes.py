import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient
from types import SimpleNamespace
from unittest.mock import patch, AsyncMock, MagicMock
from uuid import uuid4

from coopmarket.core.errors import IllegalTransitionError, JobAlreadyClaimedError, NotFoundError
from coopmarket.main import app
from coopmarket.models.order import OrderStatus
from coopmarket.schemas.ledger import ChainVerification
from coopmarket.schemas.settlement import PoolStateResponse

CUSTOMER = {"X-Actor-Id": "cust-1", "X-Actor-Role": "customer"}
RESTAURANT = {"X-Actor-Id": "rest-owner-1", "X-Actor-Role": "restaurant"}
WORKER = {"X-Actor-Id": "worker-1", "X-Actor-Role": "worker"}


@pytest.fixture
def client():
    return TestClient(app)


def _fake_order(**overrides):
    order = SimpleNamespace(
        id=uuid4(),
        customer_id="cust-1",
        restaurant_id=uuid4(),
        worker_id=None,
        status=OrderStatus.PAYMENT_HELD,
        items=[{"menu_item_id": str(uuid4()), "name": "Paneer Wrap", "price": 15000, "quantity": 1}],
        subtotal=15000,
        delivery_fee=4000,
        tip=0,
        total=19000,
        delivery_street="12 Residency Road",
        delivery_city="Bengaluru",
        delivery_postal_code="560025",
        delivery_lat=12.98,
        delivery_lng=77.60,
        estimated_prep_time=None,
        restaurant_accepted_at=None,
        worker_claimed_at=None,
        picked_up_at=None,
        delivered_at=None,
        settled_at=None,
        cancelled_at=None,
        cancellation_reason=None,
        created_at=datetime.now(timezone.utc),
    )
    for key, value in overrides.items():
        setattr(order, key, value)
    return order


class TestOrderRoutes:
    def test_missing_principal_is_unauthorized(self, client):
        response = client.get(f"/api/v1/orders/{uuid4()}")
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_unknown_role_is_unauthorized(self, client):
        response = client.get(f"/api/v1/orders/{uuid4()}", headers={"X-Actor-Id": "x", "X-Actor-Role": "pirate"})
        assert response.status_code == 401

    def test_create_order_empty_items(self, client):
        """Test validation for empty items"""
        order_data = {
            "restaurant_id": str(uuid4()),
            "items": [],
            "delivery_address": {"street": "a", "city": "b", "postal_code": "c", "lat": 1.0, "lng": 2.0},
        }

        response = client.post("/api/v1/orders", json=order_data, headers=CUSTOMER)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_get_order_success(self, client):
        order = _fake_order()
        with patch("coopmarket.api.v1.orders.order_service") as mock_service:
            mock_service.get_order = AsyncMock(return_value=order)

            response = client.get(f"/api/v1/orders/{order.id}", headers=CUSTOMER)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == str(order.id)
        assert data["status"] == "payment_held"
        assert data["delivery_address"]["city"] == "Bengaluru"

    def test_get_order_not_found(self, client):
        with patch("coopmarket.api.v1.orders.order_service") as mock_service:
            mock_service.get_order = AsyncMock(side_effect=NotFoundError("Order not found"))

            response = client.get(f"/api/v1/orders/{uuid4()}", headers=CUSTOMER)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_illegal_transition_is_a_conflict(self, client):
        with patch("coopmarket.api.v1.orders.order_service") as mock_service:
            mock_service.restaurant_accept = AsyncMock(
                side_effect=IllegalTransitionError(OrderStatus.CANCELLED, OrderStatus.RESTAURANT_ACCEPTED)
            )

            response = client.post(f"/api/v1/orders/{uuid4()}/accept", headers=RESTAURANT)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "illegal_transition"
        assert "cancelled" in error["message"]

    def test_claim_lost_race(self, client):
        with patch("coopmarket.api.v1.orders.order_service") as mock_service:
            mock_service.worker_claim = AsyncMock(side_effect=JobAlreadyClaimedError("Job already claimed"))

            response = client.post(f"/api/v1/orders/{uuid4()}/claim", headers=WORKER)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "job_already_claimed"

    def test_accept_passes_prep_time(self, client):
        order = _fake_order(status=OrderStatus.POSTED_TO_BOARD, estimated_prep_time=25)
        with patch("coopmarket.api.v1.orders.order_service") as mock_service:
            mock_service.restaurant_accept = AsyncMock(return_value=order)

            response = client.post(
                f"/api/v1/orders/{order.id}/accept", json={"estimated_prep_time": 25}, headers=RESTAURANT
            )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "posted_to_board"
        assert mock_service.restaurant_accept.call_args.kwargs["estimated_prep_time"] == 25

    def test_cancel_requires_reason(self, client):
        response = client.post(f"/api/v1/orders/{uuid4()}/cancel", json={}, headers=CUSTOMER)
        assert response.status_code == 422


class TestReadRoutes:
    def test_job_board(self, client):
        board = MagicMock()
        board.list = AsyncMock(return_value=[])
        with patch("coopmarket.api.v1.jobs.get_job_board", return_value=board):
            response = client.get("/api/v1/jobs", headers=WORKER)

        assert response.status_code == 200
        assert response.json()["data"] == []

    def test_pool_state_is_public(self, client):
        state = PoolStateResponse(balance=1200, total_contributions=1500, total_topups=300)
        with patch("coopmarket.api.v1.pool.pool_service") as mock_service:
            mock_service.get_pool_state = AsyncMock(return_value=state)

            response = client.get("/api/v1/pool")

        assert response.status_code == 200
        assert response.json()["data"]["balance"] == 1200

    def test_daily_settlement_is_admin_only(self, client):
        with patch("coopmarket.api.v1.pool.pool_service") as mock_service:
            mock_service.settle_daily_minimums = AsyncMock()

            response = client.post("/api/v1/pool/settle-daily", json={"date": "2024-03-01"}, headers=WORKER)

        assert response.status_code == 403
        mock_service.settle_daily_minimums.assert_not_called()

    def test_chain_verification(self, client):
        result = ChainVerification(valid=False, broken_at_version=3, events_checked=3)
        with patch("coopmarket.api.v1.ledger.ledger") as mock_ledger:
            mock_ledger.verify_chain = AsyncMock(return_value=result)

            response = client.get("/api/v1/ledger/verify/order/abc")

        assert response.status_code == 200
        assert response.json()["data"] == {"valid": False, "broken_at_version": 3, "events_checked": 3}
        mock_ledger.verify_chain.assert_awaited_once_with("abc", "order")
