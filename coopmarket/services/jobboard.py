"""
Job claim registry backed by the shared Redis store.

Each order uses three independent keys:
  listing  - member of the JOB_BOARD_KEY sorted set (score = post time, ms)
  detail   - JOB_DETAIL_PREFIX + order_id, the serialized JobBoardEntry
  lock     - JOB_CLAIM_PREFIX + order_id, the id of the worker holding the claim

The atomic SET NX on the lock key is the only contended operation, so exactly one
claimant wins no matter how many race for the same order.
"""
import logging
import time
from typing import List, Optional

import redis.asyncio as aioredis

from coopmarket.core.config import JOB_CLAIM_TTL_SEC, JOB_DETAIL_TTL_SEC
from coopmarket.core.redis import get_redis
from coopmarket.schemas.jobs import JobBoardEntry

log = logging.getLogger(__name__)

JOB_BOARD_KEY = "coop:jobboard"
JOB_DETAIL_PREFIX = "coop:job:"
JOB_CLAIM_PREFIX = "coop:claim:"


class JobBoard:
    def __init__(
        self,
        redis: aioredis.Redis,
        detail_ttl: int = JOB_DETAIL_TTL_SEC,
        claim_ttl: int = JOB_CLAIM_TTL_SEC,
    ):
        self.redis = redis
        self.detail_ttl = detail_ttl
        self.claim_ttl = claim_ttl

    async def post(self, entry: JobBoardEntry) -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(f"{JOB_DETAIL_PREFIX}{entry.order_id}", entry.model_dump_json(), ex=self.detail_ttl)
        pipe.zadd(JOB_BOARD_KEY, {entry.order_id: int(time.time() * 1000)})
        pipe.expire(JOB_BOARD_KEY, self.detail_ttl)
        await pipe.execute()
        log.info(f"Job posted to board: order={entry.order_id} delivery_fee={entry.delivery_fee}")

    async def list(self) -> List[JobBoardEntry]:
        """Snapshot of visible, unclaimed jobs, oldest first."""
        order_ids = await self.redis.zrange(JOB_BOARD_KEY, 0, -1)
        if not order_ids:
            return []

        pipe = self.redis.pipeline(transaction=False)
        for order_id in order_ids:
            pipe.get(f"{JOB_DETAIL_PREFIX}{order_id}")
        details = await pipe.execute()

        jobs, expired = [], []
        for order_id, raw in zip(order_ids, details):
            if raw is None:
                expired.append(order_id)
                continue
            jobs.append(JobBoardEntry.model_validate_json(raw))

        if expired:
            await self.redis.zrem(JOB_BOARD_KEY, *expired)
        return jobs

    async def get(self, order_id) -> Optional[JobBoardEntry]:
        raw = await self.redis.get(f"{JOB_DETAIL_PREFIX}{order_id}")
        if raw is None:
            return None
        return JobBoardEntry.model_validate_json(raw)

    async def claim(self, order_id, worker_id: str) -> bool:
        """
        First successful claim wins. A repeated claim by the current holder
        succeeds again; any other worker gets False and nothing changes.
        """
        order_id = str(order_id)
        claim_key = f"{JOB_CLAIM_PREFIX}{order_id}"

        acquired = await self.redis.set(claim_key, worker_id, nx=True, ex=self.claim_ttl)
        if not acquired:
            holder = await self.redis.get(claim_key)
            return holder == worker_id

        pipe = self.redis.pipeline(transaction=True)
        pipe.zrem(JOB_BOARD_KEY, order_id)
        pipe.delete(f"{JOB_DETAIL_PREFIX}{order_id}")
        await pipe.execute()

        log.info(f"Job claimed: order={order_id} worker={worker_id}")
        return True

    async def claimed_by(self, order_id) -> Optional[str]:
        return await self.redis.get(f"{JOB_CLAIM_PREFIX}{order_id}")

    async def release(self, order_id) -> None:
        await self.redis.delete(f"{JOB_CLAIM_PREFIX}{order_id}")
        log.info(f"Job claim released: order={order_id}")

    async def remove(self, order_id) -> None:
        order_id = str(order_id)
        pipe = self.redis.pipeline(transaction=True)
        pipe.zrem(JOB_BOARD_KEY, order_id)
        pipe.delete(f"{JOB_DETAIL_PREFIX}{order_id}", f"{JOB_CLAIM_PREFIX}{order_id}")
        await pipe.execute()
        log.info(f"Job removed from board: order={order_id}")

    async def count(self) -> int:
        return await self.redis.zcard(JOB_BOARD_KEY)


def get_job_board() -> JobBoard:
    return JobBoard(get_redis())
