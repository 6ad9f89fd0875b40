"""
Jobs Module - API Routes

- POST /api/v1/jobs                  - post a job (citizen)
- GET  /api/v1/jobs                  - open jobs, filter by category/city
- GET  /api/v1/jobs/{id}             - job detail
- PATCH /api/v1/jobs/{id}            - owner edits a job still taking bids
- POST /api/v1/jobs/{id}/complete    - owner confirms the work is done
- POST /api/v1/jobs/{id}/cancel      - owner cancels
- POST /api/v1/jobs/{id}/reviews     - owner rates the electrician
"""
from uuid import UUID

from fastapi import APIRouter, Query, status

from src.modules.auth.dependencies import CurrentCitizen, CurrentUser
from src.modules.auth.models import ServiceCategory
from src.modules.jobs.dependencies import JobLifecycleDep
from src.modules.jobs.schemas import (
    JobCancelRequest,
    JobCreate,
    JobListResponse,
    JobResponse,
    JobUpdate,
    ReviewCreate,
    ReviewResponse,
)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    data: JobCreate,
    current_user: CurrentCitizen,
    jobs: JobLifecycleDep,
):
    """
    Post a new job.

    The job starts OPEN and is announced to every available electrician of the
    same category in the same city.
    """
    return await jobs.create_job(current_user, data)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
    category: ServiceCategory | None = Query(None),
    city: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """Jobs still accepting bids."""
    items, total = await jobs.list_open(
        category=category.value if category else None,
        city=city,
        page=page,
        page_size=page_size,
    )
    return JobListResponse(jobs=items, total=total, page=page, page_size=page_size)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
):
    return await jobs.get(job_id)


@router.patch("/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: UUID,
    data: JobUpdate,
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
):
    """Edit title, description, category, urgency, budget or location while the job is OPEN or BIDDING."""
    return await jobs.update_details(job_id, current_user, data)


@router.post("/{job_id}/complete", response_model=JobResponse)
async def complete_job(
    job_id: UUID,
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
):
    """Releases the escrow to the electrician and archives the conversation."""
    return await jobs.complete(job_id, current_user)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: UUID,
    data: JobCancelRequest,
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
):
    """Refunds or voids the escrow, rejects pending bids, archives the conversation."""
    return await jobs.cancel(job_id, current_user, data.reason)


@router.post("/{job_id}/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def review_job(
    job_id: UUID,
    data: ReviewCreate,
    current_user: CurrentUser,
    jobs: JobLifecycleDep,
):
    return await jobs.review(job_id, current_user, data.rating, data.comment)
