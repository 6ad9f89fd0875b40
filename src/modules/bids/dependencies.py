"""
Bids Module - FastAPI Dependencies
"""
from typing import Annotated

from fastapi import Depends

from src.modules.bids.service import BidLedger
from src.modules.jobs.dependencies import JobLifecycleDep


async def get_bid_ledger(jobs: JobLifecycleDep) -> BidLedger:
    """BidLedger sharing the lifecycle manager's session, locks and dispatcher."""
    return BidLedger(jobs.db, jobs.locks, jobs.dispatcher, jobs)


# Type aliases
BidLedgerDep = Annotated[BidLedger, Depends(get_bid_ledger)]
