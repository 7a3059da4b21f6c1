from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from coopmarket.api.deps import get_principal
from coopmarket.core.errors import ForbiddenError
from coopmarket.schemas.ledger import Actor, ActorRole
from coopmarket.schemas.response import SuccessResponse
from coopmarket.schemas.settlement import DailySettleRequest, WorkerEarningsResponse
from coopmarket.services import pool_service

router = APIRouter()


@router.get("", response_model=SuccessResponse)
async def pool_state():
    state = await pool_service.get_pool_state()
    return SuccessResponse(data=state.model_dump())


@router.get("/ledger", response_model=SuccessResponse)
async def pool_ledger(limit: int = Query(default=50, ge=1, le=500)):
    entries = await pool_service.get_pool_ledger(limit)
    data = [
        {
            "id": e.id,
            "transaction_type": e.transaction_type,
            "amount": e.amount,
            "balance_after": e.balance_after,
            "order_id": e.order_id,
            "worker_id": e.worker_id,
            "description": e.description,
            "created_at": e.created_at,
        }
        for e in entries
    ]
    return SuccessResponse(data=data)


@router.post("/settle-daily", response_model=SuccessResponse)
async def settle_daily(payload: DailySettleRequest, actor: Actor = Depends(get_principal)):
    if actor.role not in (ActorRole.COOP_ADMIN, ActorRole.SYSTEM):
        raise ForbiddenError("Only the cooperative can run the daily settlement")
    result = await pool_service.settle_daily_minimums(payload.date)
    return SuccessResponse(data=result.model_dump())


@router.get("/earnings/{worker_id}", response_model=SuccessResponse)
async def worker_earnings(worker_id: str, day: Optional[date] = Query(default=None, alias="date")):
    earnings = await pool_service.get_worker_earnings(worker_id, day)
    if not earnings:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No earnings recorded for that day")

    data = WorkerEarningsResponse(
        worker_id=earnings.worker_id,
        date=earnings.date,
        deliveries_completed=earnings.deliveries_completed,
        delivery_fees=earnings.delivery_fees,
        tips=earnings.tips,
        pool_topup=earnings.pool_topup,
        total_earnings=earnings.total_earnings,
        is_settled=earnings.is_settled,
    ).model_dump()
    return SuccessResponse(data=data)
