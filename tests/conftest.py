from types import SimpleNamespace

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from tortoise import Tortoise

from coopmarket.core import redis as redis_module
from coopmarket.core.db import MODELS_MODULES
from coopmarket.models.order import MenuItem, Restaurant
from coopmarket.schemas.ledger import Actor, ActorRole
from coopmarket.schemas.order import OrderRequest
from coopmarket.services import order_service


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory schema per test."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def fake_redis(monkeypatch):
    client = FakeAsyncRedis(decode_responses=True)
    await client.flushall()
    monkeypatch.setattr(redis_module, "_redis", client)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def actors():
    return SimpleNamespace(
        customer=Actor(id="cust-1", role=ActorRole.CUSTOMER),
        other_customer=Actor(id="cust-2", role=ActorRole.CUSTOMER),
        restaurant=Actor(id="rest-owner-1", role=ActorRole.RESTAURANT),
        worker=Actor(id="worker-1", role=ActorRole.WORKER),
        other_worker=Actor(id="worker-2", role=ActorRole.WORKER),
        admin=Actor(id="admin-1", role=ActorRole.COOP_ADMIN),
    )


@pytest_asyncio.fixture
async def restaurant(db, actors):
    rest = await Restaurant.create(
        owner_id=actors.restaurant.id,
        name="Masala Box",
        lat=12.9716,
        lng=77.5946,
        average_prep_time=15,
    )
    await MenuItem.create(restaurant=rest, name="Paneer Wrap", price=15000)
    await MenuItem.create(restaurant=rest, name="Sweet Lassi", price=5000)
    return rest


@pytest.fixture
def place_order(restaurant, actors, fake_redis):
    """Places an order for both menu items (subtotal 20000) about 1.5 km away."""
    async def _place(tip: int = 0, customer: Actor = None):
        menu = await MenuItem.filter(restaurant_id=restaurant.id).order_by("price")
        request = OrderRequest(
            restaurant_id=restaurant.id,
            items=[{"menu_item_id": m.id, "quantity": 1} for m in menu],
            delivery_address={
                "street": "12 Residency Road",
                "city": "Bengaluru",
                "postal_code": "560025",
                "lat": 12.9816,
                "lng": 77.6046,
            },
            tip=tip,
        )
        order, _ = await order_service.create_order(customer or actors.customer, request)
        return order

    return _place


@pytest.fixture
def deliver_order(actors):
    """Walks an order from payment_held through delivery (and therefore settlement)."""
    async def _deliver(order, worker: Actor = None):
        worker = worker or actors.worker
        await order_service.restaurant_accept(order.id, actors.restaurant)
        await order_service.worker_claim(order.id, worker)
        await order_service.worker_pickup(order.id, worker)
        return await order_service.confirm_delivery(order.id, worker)

    return _deliver
