from fastapi import APIRouter, Query

from coopmarket.events import ledger
from coopmarket.schemas.response import SuccessResponse

router = APIRouter()


# Public transparency feed: any member can audit what happened and check the chain.

@router.get("/recent", response_model=SuccessResponse)
async def recent_events(limit: int = Query(default=50, ge=1, le=500)):
    events = await ledger.list_recent_events(limit)
    return SuccessResponse(data=[e.model_dump() for e in events])


@router.get("/verify/{aggregate_type}/{aggregate_id}", response_model=SuccessResponse)
async def verify_aggregate_chain(aggregate_type: str, aggregate_id: str):
    result = await ledger.verify_chain(aggregate_id, aggregate_type)
    return SuccessResponse(data=result.model_dump())


@router.get("/{aggregate_type}/{aggregate_id}", response_model=SuccessResponse)
async def aggregate_events(aggregate_type: str, aggregate_id: str):
    events = await ledger.list_events(aggregate_id, aggregate_type)
    return SuccessResponse(data=[e.model_dump() for e in events])
