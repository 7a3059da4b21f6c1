from uuid import UUID

from fastapi import APIRouter, Depends

from coopmarket.api.deps import get_principal
from coopmarket.schemas.dispute import DisputeResponse, ResolveDisputeRequest
from coopmarket.schemas.ledger import Actor
from coopmarket.schemas.response import SuccessResponse
from coopmarket.services import dispute_service

router = APIRouter()


@router.post("/{dispute_id}/resolve", response_model=SuccessResponse)
async def resolve_dispute_endpoint(
    dispute_id: UUID, payload: ResolveDisputeRequest, actor: Actor = Depends(get_principal)
):
    dispute = await dispute_service.resolve_dispute(
        dispute_id,
        actor,
        resolution=payload.resolution,
        refund_amount=payload.refund_amount,
        notes=payload.notes,
    )
    return SuccessResponse(data=DisputeResponse.from_dispute(dispute).model_dump())
