"""
Worker guarantee pool.

Every settled order contributes a governed share of its delivery fee to the pool
(see settlement.settle). Once a day the pool tops up each worker whose earnings
for that day fell short of the governed daily minimum, as far as the balance allows.
"""
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from coopmarket.events.bus import event_bus
from coopmarket.models.pool import POOL_STATE_ID, PoolLedgerEntry, PoolState, WorkerDailyEarnings
from coopmarket.schemas.ledger import SYSTEM_ACTOR
from coopmarket.schemas.settlement import DailySettleResult, PoolStateResponse, WorkerTopup
from coopmarket.services.parameters import get_governed_parameters

log = logging.getLogger(__name__)


async def get_pool_state() -> PoolStateResponse:
    pool = await PoolState.get_or_none(id=POOL_STATE_ID)
    if pool is None:
        return PoolStateResponse(balance=0, total_contributions=0, total_topups=0)
    return PoolStateResponse(
        balance=pool.balance,
        total_contributions=pool.total_contributions,
        total_topups=pool.total_topups,
    )


async def get_pool_ledger(limit: int = 50) -> List[PoolLedgerEntry]:
    return await PoolLedgerEntry.all().order_by("-id").limit(limit)


async def settle_daily_minimums(day: date) -> DailySettleResult:
    """
    Tops up every unsettled worker-day below the daily minimum, oldest shortfall
    first, and marks all of that day's rows settled. Running it twice for the
    same day pays nothing the second time.
    """
    params = await get_governed_parameters()
    minimum = params.daily_minimum_guarantee
    now = datetime.now(timezone.utc)
    topups: List[WorkerTopup] = []

    async with in_transaction() as conn:
        pool = await PoolState.filter(id=POOL_STATE_ID).using_db(conn).select_for_update().first()
        balance = pool.balance if pool else 0

        rows = await (
            WorkerDailyEarnings.filter(date=day, is_settled=False)
            .using_db(conn)
            .select_for_update()
            .order_by("id")
        )
        for row in rows:
            shortfall = minimum - row.total_earnings
            amount = min(shortfall, balance) if shortfall > 0 else 0

            if amount > 0:
                balance -= amount
                await PoolLedgerEntry.create(
                    transaction_type="daily_topup",
                    amount=-amount,
                    balance_after=balance,
                    worker_id=row.worker_id,
                    description=f"Daily minimum top-up for {row.worker_id} on {day.isoformat()}",
                    using_db=conn,
                )
                topups.append(WorkerTopup(worker_id=row.worker_id, amount=amount))
            elif shortfall > 0:
                log.warning(f"Pool exhausted; worker {row.worker_id} short by {shortfall} on {day}")

            await WorkerDailyEarnings.filter(id=row.id).using_db(conn).update(
                pool_topup=F("pool_topup") + amount,
                total_earnings=F("total_earnings") + amount,
                is_settled=True,
                updated_at=now,
            )

        paid = sum(t.amount for t in topups)
        if pool is not None and paid:
            await PoolState.filter(id=POOL_STATE_ID).using_db(conn).update(
                balance=F("balance") - paid,
                total_topups=F("total_topups") + paid,
                last_updated=now,
            )

    for topup in topups:
        await event_bus.emit("payment.pool_topup", topup.worker_id, "worker", SYSTEM_ACTOR, {
            "workerId": topup.worker_id,
            "amount": topup.amount,
            "date": day.isoformat(),
            "dailyMinimum": minimum,
        })

    log.info(f"Daily minimums settled for {day}: {len(topups)} top-ups, {sum(t.amount for t in topups)} paid")
    return DailySettleResult(date=day, topups=topups, pool_balance_after=balance)


async def get_worker_earnings(worker_id: str, day: Optional[date] = None) -> Optional[WorkerDailyEarnings]:
    day = day or datetime.now(timezone.utc).date()
    return await WorkerDailyEarnings.get_or_none(worker_id=worker_id, date=day)
