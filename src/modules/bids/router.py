"""
Bids Module - API Routes

- POST   /api/v1/jobs/{job_id}/bids   - submit a bid (electrician)
- GET    /api/v1/jobs/{job_id}/bids   - bids on a job (owner: all, electrician: own)
- GET    /api/v1/bids/mine            - my bids
- GET    /api/v1/bids/{id}            - bid detail
- PATCH  /api/v1/bids/{id}            - change a pending bid
- DELETE /api/v1/bids/{id}            - withdraw a pending bid
- POST   /api/v1/bids/{id}/accept     - owner accepts; every other pending bid is rejected
- POST   /api/v1/bids/{id}/reject     - owner rejects one bid
"""
from uuid import UUID

from fastapi import APIRouter, Query, status

from src.core.exceptions import NotFoundError
from src.modules.auth.dependencies import CurrentElectrician, CurrentUser
from src.modules.auth.models import UserRole
from src.modules.bids.dependencies import BidLedgerDep
from src.modules.bids.models import BidStatus
from src.modules.bids.schemas import (
    BidAcceptResponse,
    BidCreate,
    BidListResponse,
    BidResponse,
    BidUpdate,
)

router = APIRouter(tags=["Bids"])


@router.post("/jobs/{job_id}/bids", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
async def submit_bid(
    job_id: UUID,
    data: BidCreate,
    current_user: CurrentElectrician,
    ledger: BidLedgerDep,
):
    """One active bid per electrician per job; the job must be OPEN or BIDDING."""
    return await ledger.submit(
        job_id,
        current_user,
        amount=data.amount,
        estimated_duration_hours=data.estimated_duration_hours,
        message=data.message,
    )


@router.get("/jobs/{job_id}/bids", response_model=BidListResponse)
async def list_job_bids(
    job_id: UUID,
    current_user: CurrentUser,
    ledger: BidLedgerDep,
):
    bids = await ledger.list_for_job(job_id, current_user)
    return BidListResponse(bids=bids, total=len(bids))


@router.get("/bids/mine", response_model=BidListResponse)
async def list_my_bids(
    current_user: CurrentElectrician,
    ledger: BidLedgerDep,
    bid_status: BidStatus | None = Query(None, alias="status"),
):
    bids = await ledger.list_for_bidder(current_user.id, bid_status.value if bid_status else None)
    return BidListResponse(bids=bids, total=len(bids))


@router.get("/bids/{bid_id}", response_model=BidResponse)
async def get_bid(
    bid_id: UUID,
    current_user: CurrentUser,
    ledger: BidLedgerDep,
):
    bid = await ledger.get(bid_id)
    if bid.electrician_id == current_user.id or current_user.role == UserRole.ADMIN.value:
        return bid
    job = await ledger.jobs.get(bid.job_id)
    if job.citizen_id != current_user.id:
        raise NotFoundError("Bid", bid_id)
    return bid


@router.patch("/bids/{bid_id}", response_model=BidResponse)
async def amend_bid(
    bid_id: UUID,
    data: BidUpdate,
    current_user: CurrentElectrician,
    ledger: BidLedgerDep,
):
    return await ledger.amend(
        bid_id,
        current_user,
        amount=data.amount,
        estimated_duration_hours=data.estimated_duration_hours,
        message=data.message,
    )


@router.delete("/bids/{bid_id}", response_model=BidResponse)
async def withdraw_bid(
    bid_id: UUID,
    current_user: CurrentElectrician,
    ledger: BidLedgerDep,
):
    """Withdraw a pending bid. Withdrawing twice is a no-op."""
    return await ledger.withdraw(bid_id, current_user)


@router.post("/bids/{bid_id}/accept", response_model=BidAcceptResponse)
async def accept_bid(
    bid_id: UUID,
    current_user: CurrentUser,
    ledger: BidLedgerDep,
):
    """
    Accept a bid.

    Exactly one bid per job can ever be accepted. On success the job moves to
    IN_PROGRESS, every other pending bid is rejected, an escrow hold is opened
    for the bid amount and the owner/electrician conversation becomes
    available. A second accept on the same job fails with 409.
    """
    bid = await ledger.get(bid_id)
    outcome = await ledger.accept(bid.job_id, bid_id, current_user)
    return BidAcceptResponse(
        bid=BidResponse.model_validate(outcome.bid),
        job_id=outcome.job.id,
        job_status=outcome.job.status,
        escrow_status=outcome.escrow.status if outcome.escrow else None,
        conversation_id=outcome.conversation.id,
    )


@router.post("/bids/{bid_id}/reject", response_model=BidResponse)
async def reject_bid(
    bid_id: UUID,
    current_user: CurrentUser,
    ledger: BidLedgerDep,
):
    return await ledger.reject(bid_id, current_user)
