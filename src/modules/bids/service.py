"""
Bids Module - Service Layer

BidLedger is the only writer of bid status.

- submit/accept/reject run under the job critical section.
- withdraw/amend only need the bid: a per-bid lock plus a compare-and-set
  ``UPDATE ... WHERE status = 'pending'``. Whichever of withdraw and accept
  commits first wins; the other sees zero affected rows and fails cleanly.
"""
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    BidAlreadyDecided,
    BidNotWithdrawable,
    DuplicateActiveBid,
    ForbiddenError,
    InvalidTransition,
    JobNotOpenForBids,
    NotFoundError,
    ValidationError,
)
from src.core.locks import KeyedLocks, critical_section
from src.core.logging import get_logger
from src.core.metrics import BIDS_ACCEPTED, BIDS_SUBMITTED, record_accept_conflict
from src.core.models import utc_now
from src.modules.auth.models import User, UserRole
from src.modules.bids.models import ACTIVE_BID_STATUSES, Bid, BidStatus
from src.modules.conversations.models import Conversation
from src.modules.escrow.models import EscrowAccount
from src.modules.jobs.models import BIDDABLE_STATUSES, Job, JobStatus
from src.modules.jobs.service import JobLifecycleManager
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.events import BidAccepted, BidNew, BidRejected

logger = get_logger(__name__)


@dataclass
class AcceptOutcome:
    bid: Bid
    job: Job
    escrow: EscrowAccount | None
    conversation: Conversation
    rejected: list[Bid]


class BidLedger:
    def __init__(
        self,
        db: AsyncSession,
        locks: KeyedLocks,
        dispatcher: NotificationDispatcher,
        jobs: JobLifecycleManager | None = None,
    ):
        self.db = db
        self.locks = locks
        self.dispatcher = dispatcher
        self.jobs = jobs or JobLifecycleManager(db, locks, dispatcher)

    # === Reads ===

    async def get(self, bid_id: UUID) -> Bid:
        bid = await self.db.get(Bid, bid_id)
        if bid is None:
            raise NotFoundError("Bid", bid_id)
        return bid

    async def list_for_job(self, job_id: UUID, viewer: User) -> list[Bid]:
        """The owner sees every bid; an electrician sees only their own."""
        job = await self.jobs.get(job_id)
        query = select(Bid).where(Bid.job_id == job.id)
        if job.citizen_id != viewer.id and viewer.role != UserRole.ADMIN.value:
            query = query.where(Bid.electrician_id == viewer.id)
        result = await self.db.execute(query.order_by(Bid.created_at))
        return list(result.scalars().all())

    async def list_for_bidder(self, bidder_id: UUID, status: str | None = None) -> list[Bid]:
        query = select(Bid).where(Bid.electrician_id == bidder_id)
        if status:
            query = query.where(Bid.status == status)
        result = await self.db.execute(query.order_by(Bid.created_at.desc()))
        return list(result.scalars().all())

    async def _lock_bid(self, bid_id: UUID) -> Bid:
        result = await self.db.execute(
            select(Bid).where(Bid.id == bid_id).execution_options(populate_existing=True)
        )
        bid = result.scalar_one_or_none()
        if bid is None:
            raise NotFoundError("Bid", bid_id)
        return bid

    # === Writes ===

    async def submit(
        self,
        job_id: UUID,
        bidder: User,
        amount: Decimal,
        estimated_duration_hours: int,
        message: str,
    ) -> Bid:
        if not bidder.is_electrician:
            raise ForbiddenError("Only electricians can bid")
        if amount <= 0 or estimated_duration_hours <= 0 or not message.strip():
            raise ValidationError(
                "Bid needs a positive amount, a positive duration and a message",
                amount=str(amount),
                estimated_duration_hours=estimated_duration_hours,
            )

        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.jobs.lock_job(job_id)
            if job.status not in BIDDABLE_STATUSES:
                raise JobNotOpenForBids(job.id, job.status)
            if job.citizen_id == bidder.id:
                raise ForbiddenError("You cannot bid on your own job")

            existing = await self.db.execute(
                select(Bid.id).where(
                    Bid.job_id == job.id,
                    Bid.electrician_id == bidder.id,
                    Bid.status.in_(ACTIVE_BID_STATUSES),
                )
            )
            if existing.first() is not None:
                raise DuplicateActiveBid(job.id)

            bid = Bid(
                job_id=job.id,
                electrician_id=bidder.id,
                amount=amount,
                estimated_duration_hours=estimated_duration_hours,
                message=message.strip(),
                status=BidStatus.PENDING.value,
            )
            self.db.add(bid)
            job.bid_count += 1
            self.jobs.mark_bidding(job)
            try:
                await self.db.flush()
            except IntegrityError:
                raise DuplicateActiveBid(job.id)
            await self.db.commit()

        BIDS_SUBMITTED.labels(category=job.category).inc()
        logger.info("Bid submitted", job_id=str(job.id), bid_id=str(bid.id), amount=str(amount))

        self.dispatcher.publish(
            BidNew(
                job_id=job.id,
                actor_id=bidder.id,
                owner_id=job.citizen_id,
                bid_id=bid.id,
                bidder_id=bidder.id,
                amount=bid.amount,
            )
        )
        return bid

    async def amend(
        self,
        bid_id: UUID,
        bidder: User,
        amount: Decimal | None = None,
        estimated_duration_hours: int | None = None,
        message: str | None = None,
    ) -> Bid:
        """Change a pending bid's terms."""
        changes = {
            key: value
            for key, value in (
                ("amount", amount),
                ("estimated_duration_hours", estimated_duration_hours),
                ("message", message.strip() if message else message),
            )
            if value is not None
        }

        async with critical_section(self.db, self.locks.bid(bid_id)):
            bid = await self._lock_bid(bid_id)
            if bid.electrician_id != bidder.id:
                raise ForbiddenError("Only the bidder can change this bid")
            if not changes:
                await self.db.commit()
                return bid

            result = await self.db.execute(
                update(Bid)
                .where(Bid.id == bid.id, Bid.status == BidStatus.PENDING.value)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.refresh(bid)
                raise InvalidTransition("Bid", bid.status, "amended")
            await self.db.commit()

        await self.db.refresh(bid)
        logger.info("Bid amended", bid_id=str(bid.id), fields=sorted(changes))
        return bid

    async def withdraw(self, bid_id: UUID, bidder: User) -> Bid:
        async with critical_section(self.db, self.locks.bid(bid_id)):
            bid = await self._lock_bid(bid_id)
            if bid.electrician_id != bidder.id:
                raise ForbiddenError("Only the bidder can withdraw this bid")
            if bid.status == BidStatus.WITHDRAWN.value:
                await self.db.commit()
                return bid
            if bid.status != BidStatus.PENDING.value:
                raise BidNotWithdrawable(bid.id, bid.status)

            # Job row first, bid row second: same lock order as accept
            await self.db.execute(
                update(Job)
                .where(Job.id == bid.job_id, Job.bid_count > 0)
                .values(bid_count=Job.bid_count - 1)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(
                update(Bid)
                .where(Bid.id == bid.id, Bid.status == BidStatus.PENDING.value)
                .values(status=BidStatus.WITHDRAWN.value, withdrawn_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.refresh(bid)
                raise BidNotWithdrawable(bid.id, bid.status)
            await self.db.commit()

        await self.db.refresh(bid)
        logger.info("Bid withdrawn", bid_id=str(bid.id), job_id=str(bid.job_id))
        return bid

    async def accept(self, job_id: UUID, bid_id: UUID, actor: User) -> AcceptOutcome:
        """
        Accept one bid and reject every other pending bid, atomically.

        Under the job lock: re-check that nothing has been decided yet, flip the
        target with a compare-and-set, reject the rest, move the job to
        IN_PROGRESS, open escrow and the conversation, commit. Events go out
        only after the lock is released.
        """
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.jobs.lock_job(job_id)
            if job.citizen_id != actor.id:
                raise ForbiddenError("Only the job owner can accept bids")

            bids = await self.jobs.lock_bids(job.id)
            target = next((bid for bid in bids if bid.id == bid_id), None)
            if target is None:
                raise NotFoundError("Bid", bid_id)

            if job.status == JobStatus.IN_PROGRESS.value:
                record_accept_conflict("job_in_progress")
                raise BidAlreadyDecided(bid_id, target.status)
            if job.status not in BIDDABLE_STATUSES:
                record_accept_conflict("job_closed")
                raise JobNotOpenForBids(job.id, job.status)
            if target.status != BidStatus.PENDING.value or any(
                bid.status == BidStatus.ACCEPTED.value for bid in bids
            ):
                record_accept_conflict("bid_decided")
                raise BidAlreadyDecided(bid_id, target.status)

            now = utc_now()
            result = await self.db.execute(
                update(Bid)
                .where(Bid.id == target.id, Bid.status == BidStatus.PENDING.value)
                .values(status=BidStatus.ACCEPTED.value, accepted_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                record_accept_conflict("bid_changed")
                raise BidAlreadyDecided(bid_id)

            rejected = [bid for bid in bids if bid.id != target.id and bid.status == BidStatus.PENDING.value]
            if rejected:
                await self.db.execute(
                    update(Bid)
                    .where(
                        Bid.id.in_([bid.id for bid in rejected]),
                        Bid.status == BidStatus.PENDING.value,
                    )
                    .values(status=BidStatus.REJECTED.value, rejected_at=now)
                    .execution_options(synchronize_session=False)
                )

            # Re-read what was written so escrow holds the amount as committed
            bids = await self.jobs.lock_bids(job.id)
            target = next(bid for bid in bids if bid.id == bid_id)
            # A bid withdrawn concurrently kept its status and gets no rejection
            candidates = {bid.id for bid in rejected}
            rejected = [bid for bid in bids if bid.id in candidates and bid.status == BidStatus.REJECTED.value]

            escrow = await self.jobs.advance_to_in_progress(job, target, bids)
            conversation = await self.jobs.gate.open_for(job, target)
            await self.db.commit()

        BIDS_ACCEPTED.inc()
        logger.info(
            "Bid accepted",
            job_id=str(job.id),
            bid_id=str(target.id),
            rejected=len(rejected),
        )

        self.dispatcher.publish(
            BidAccepted(
                job_id=job.id,
                actor_id=actor.id,
                bid_id=target.id,
                bidder_id=target.electrician_id,
                amount=target.amount,
                conversation_id=conversation.id,
            ),
            *(
                BidRejected(job_id=job.id, actor_id=actor.id, bid_id=bid.id, bidder_id=bid.electrician_id)
                for bid in rejected
            ),
        )
        return AcceptOutcome(bid=target, job=job, escrow=escrow, conversation=conversation, rejected=rejected)

    async def reject(self, bid_id: UUID, actor: User) -> Bid:
        """The owner turns down a single pending bid."""
        job_id = (await self.get(bid_id)).job_id
        changed = False
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.jobs.lock_job(job_id)
            if job.citizen_id != actor.id:
                raise ForbiddenError("Only the job owner can reject bids")

            bid = await self._lock_bid(bid_id)
            if bid.status == BidStatus.PENDING.value:
                await self.db.execute(
                    update(Bid)
                    .where(Bid.id == bid.id, Bid.status == BidStatus.PENDING.value)
                    .values(status=BidStatus.REJECTED.value, rejected_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                changed = True
            elif bid.status != BidStatus.REJECTED.value:
                raise BidAlreadyDecided(bid.id, bid.status)
            await self.db.commit()

        await self.db.refresh(bid)
        if changed:
            logger.info("Bid rejected", bid_id=str(bid.id), job_id=str(job_id))
            self.dispatcher.publish(
                BidRejected(job_id=job_id, actor_id=actor.id, bid_id=bid.id, bidder_id=bid.electrician_id)
            )
        return bid
