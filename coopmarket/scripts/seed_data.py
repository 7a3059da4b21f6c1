# scripts/seed_data.py
import asyncio
import logging

from coopmarket.core.config import LOG_FORMAT
from coopmarket.core.db import close_db, init_db
from coopmarket.models.order import MenuItem, Restaurant
from coopmarket.models.parameters import SystemParameters
from coopmarket.models.pool import POOL_STATE_ID, PoolState

log = logging.getLogger(__name__)


async def seed():
    # Governed parameters and an empty guarantee pool
    await SystemParameters.get_or_create(id=1)
    await PoolState.get_or_create(id=POOL_STATE_ID)

    rest, _ = await Restaurant.get_or_create(
        owner_id="restaurant-demo",
        defaults={"name": "Demo Restaurant", "lat": 12.9716, "lng": 77.5946, "average_prep_time": 15},
    )
    log.info(f"Restaurant: {rest.id} (owner restaurant-demo)")

    m1, _ = await MenuItem.get_or_create(restaurant=rest, name="Paneer Wrap", defaults={"price": 14900})
    m2, _ = await MenuItem.get_or_create(restaurant=rest, name="Chili Paneer Rice", defaults={"price": 19900})
    m3, _ = await MenuItem.get_or_create(restaurant=rest, name="Cold Drink", defaults={"price": 4900})

    log.info(f"Menu items: {m1.id} {m2.id} {m3.id}")


async def main():
    await init_db()
    try:
        await seed()
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    asyncio.run(main())
