"""Print agent queue routes."""

from fastapi import APIRouter, Depends

from restopos.core.rbac import TokenData
from restopos.core.rbac_policy import Capability, require_capability
from restopos.db.session import DbSession
from restopos.schemas.print_job import ClaimRequest, ClaimResponse, FailureReport, PrintJobResponse
from restopos.services.print_queue_service import PrintQueueService

router = APIRouter()


@router.post("/claim", response_model=ClaimResponse)
def claim_job(
    body: ClaimRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.PRINT_QUEUE)),
):
    job = PrintQueueService(db).claim_next(body.agent_id, body.stations or None)
    return ClaimResponse(job=PrintJobResponse.model_validate(job) if job else None)


@router.post("/{job_id}/printed", response_model=PrintJobResponse)
def job_printed(
    job_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.PRINT_QUEUE)),
):
    return PrintQueueService(db).mark_printed(job_id)


@router.post("/{job_id}/failed", response_model=PrintJobResponse)
def job_failed(
    job_id: int,
    body: FailureReport,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.PRINT_QUEUE)),
):
    return PrintQueueService(db).mark_failed(job_id, body.error)
