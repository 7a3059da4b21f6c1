from fastapi import APIRouter, Depends

from coopmarket.api.deps import get_principal
from coopmarket.schemas.ledger import Actor
from coopmarket.schemas.response import SuccessResponse
from coopmarket.services.jobboard import get_job_board

router = APIRouter()


@router.get("", response_model=SuccessResponse)
async def list_jobs(actor: Actor = Depends(get_principal)):
    """Unclaimed delivery jobs, oldest first."""
    jobs = await get_job_board().list()
    return SuccessResponse(data=[job.model_dump() for job in jobs])
