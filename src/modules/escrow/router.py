"""
Escrow Module - API Routes

- GET  /api/v1/escrow/jobs/{job_id}          - escrow and payments of a job
- POST /api/v1/escrow/jobs/{job_id}/capture  - payment provider callback
"""
from uuid import UUID

from fastapi import APIRouter

from src.core.exceptions import NotFoundError
from src.modules.auth.dependencies import CurrentUser
from src.modules.auth.models import UserRole
from src.modules.escrow.dependencies import PaymentWebhook
from src.modules.escrow.schemas import CaptureConfirmation, EscrowResponse, PaymentResponse
from src.modules.jobs.dependencies import JobLifecycleDep

router = APIRouter(prefix="/escrow", tags=["Escrow"])


async def _escrow_response(jobs, job_id: UUID) -> EscrowResponse:
    escrow = await jobs.escrow.get_for_job(job_id)
    if escrow is None:
        raise NotFoundError("Escrow", job_id)
    payments = await jobs.escrow.list_payments(escrow.id)
    response = EscrowResponse.model_validate(escrow)
    response.payments = [PaymentResponse.model_validate(payment) for payment in payments]
    return response


@router.get("/jobs/{job_id}", response_model=EscrowResponse)
async def get_job_escrow(
    job_id: UUID,
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
):
    """Visible to the job owner and the assigned electrician."""
    job = await jobs.get(job_id)
    if current_user.role != UserRole.ADMIN.value and current_user.id not in (
        job.citizen_id,
        job.assigned_electrician_id,
    ):
        raise NotFoundError("Escrow", job_id)
    return await _escrow_response(jobs, job_id)


@router.post("/jobs/{job_id}/capture", response_model=EscrowResponse, dependencies=[PaymentWebhook])
async def confirm_capture(
    job_id: UUID,
    data: CaptureConfirmation,
    jobs: JobLifecycleDep,
):
    """
    The provider confirms that the citizen paid: pending_funding -> funded.

    Repeating a callback with the same ``external_reference`` is a no-op.
    """
    await jobs.confirm_funding(job_id, data.amount, data.external_reference)
    return await _escrow_response(jobs, job_id)
