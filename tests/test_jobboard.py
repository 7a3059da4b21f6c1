import asyncio

import pytest

from coopmarket.schemas.jobs import JobBoardEntry, Location
from coopmarket.services.jobboard import JOB_BOARD_KEY, JOB_CLAIM_PREFIX, JOB_DETAIL_PREFIX, JobBoard


def _entry(order_id: str = "order-1") -> JobBoardEntry:
    return JobBoardEntry(
        order_id=order_id,
        restaurant_name="Masala Box",
        pickup_location=Location(lat=12.97, lng=77.59),
        delivery_location=Location(lat=12.98, lng=77.60),
        estimated_distance=1500,
        delivery_fee=5500,
        tip=1000,
        estimated_ready_at="2024-01-01T12:15:00+00:00",
        posted_at="2024-01-01T12:00:00+00:00",
    )


@pytest.fixture
def board(fake_redis):
    return JobBoard(fake_redis)


class TestJobBoard:
    @pytest.mark.asyncio
    async def test_post_and_list(self, board):
        await board.post(_entry("order-1"))
        await board.post(_entry("order-2"))

        jobs = await board.list()
        assert {j.order_id for j in jobs} == {"order-1", "order-2"}
        assert await board.count() == 2
        assert (await board.get("order-1")).delivery_fee == 5500

    @pytest.mark.asyncio
    async def test_exactly_one_concurrent_claim_wins(self, board):
        await board.post(_entry())

        results = await asyncio.gather(*[board.claim("order-1", f"worker-{i}") for i in range(10)])

        assert results.count(True) == 1
        winner = f"worker-{results.index(True)}"
        assert await board.claimed_by("order-1") == winner

    @pytest.mark.asyncio
    async def test_winning_claim_removes_listing_and_detail(self, board, fake_redis):
        await board.post(_entry())
        assert await board.claim("order-1", "worker-1")

        assert await board.list() == []
        assert await fake_redis.get(f"{JOB_DETAIL_PREFIX}order-1") is None
        assert await fake_redis.zscore(JOB_BOARD_KEY, "order-1") is None

    @pytest.mark.asyncio
    async def test_repeat_claim_by_holder_succeeds(self, board):
        await board.post(_entry())
        assert await board.claim("order-1", "worker-1")
        assert await board.claim("order-1", "worker-1")
        assert not await board.claim("order-1", "worker-2")
        assert await board.claimed_by("order-1") == "worker-1"

    @pytest.mark.asyncio
    async def test_claim_lock_has_expiry(self, board, fake_redis):
        await board.post(_entry())
        await board.claim("order-1", "worker-1")
        ttl = await fake_redis.ttl(f"{JOB_CLAIM_PREFIX}order-1")
        assert 0 < ttl <= board.claim_ttl

    @pytest.mark.asyncio
    async def test_release_frees_the_lock(self, board):
        await board.post(_entry())
        await board.claim("order-1", "worker-1")
        await board.release("order-1")

        assert await board.claimed_by("order-1") is None
        assert await board.claim("order-1", "worker-2")

    @pytest.mark.asyncio
    async def test_remove_clears_every_key(self, board, fake_redis):
        await board.post(_entry())
        await board.claim("order-1", "worker-1")
        await board.post(_entry("order-1"))
        await board.remove("order-1")

        assert await board.count() == 0
        assert await board.get("order-1") is None
        assert await board.claimed_by("order-1") is None

    @pytest.mark.asyncio
    async def test_list_drops_entries_whose_detail_expired(self, board, fake_redis):
        await board.post(_entry("order-1"))
        await board.post(_entry("order-2"))
        await fake_redis.delete(f"{JOB_DETAIL_PREFIX}order-1")

        jobs = await board.list()

        assert [j.order_id for j in jobs] == ["order-2"]
        assert await board.count() == 1
