"""
Jobs Module - Service Layer

JobLifecycleManager is the single writer of job status. Every transition runs
inside the job's critical section (in-process keyed lock + row lock), commits
before the lock is released, and publishes its events only afterwards.
"""
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
)
from src.core.locks import KeyedLocks, critical_section
from src.core.logging import get_logger
from src.core.metrics import record_job_transition
from src.core.models import as_utc, utc_now
from src.modules.auth.models import User, UserRole
from src.modules.bids.models import Bid, BidStatus
from src.modules.conversations.service import ConversationGate
from src.modules.escrow.models import EscrowAccount, EscrowStatus
from src.modules.escrow.service import EscrowController
from src.modules.jobs.models import BIDDABLE_STATUSES, JOB_TRANSITIONS, Job, JobStatus, Review
from src.modules.jobs.schemas import JobCreate, JobUpdate
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.events import JobCancelled, JobCompleted, JobNew

logger = get_logger(__name__)

FUNDING_TIMEOUT_REASON = "funding_timeout"


class JobLifecycleManager:
    """Owns the job state machine and cascades into escrow and conversations."""

    def __init__(
        self,
        db: AsyncSession,
        locks: KeyedLocks,
        dispatcher: NotificationDispatcher,
        escrow: EscrowController | None = None,
        gate: ConversationGate | None = None,
    ):
        self.db = db
        self.locks = locks
        self.dispatcher = dispatcher
        self.escrow = escrow or EscrowController(db)
        self.gate = gate or ConversationGate(db, dispatcher)

    # === Reads ===

    async def get(self, job_id: UUID) -> Job:
        job = await self.db.get(Job, job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def lock_job(self, job_id: UUID) -> Job:
        """Row-lock and reload the job; call only inside the job critical section."""
        result = await self.db.execute(
            select(Job)
            .where(Job.id == job_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def lock_bids(self, job_id: UUID) -> list[Bid]:
        # Lock order is always job row, then bid rows
        result = await self.db.execute(
            select(Bid)
            .where(Bid.job_id == job_id)
            .order_by(Bid.created_at)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def accepted_bid(self, job: Job) -> Bid | None:
        result = await self.db.execute(
            select(Bid).where(Bid.job_id == job.id, Bid.status == BidStatus.ACCEPTED.value)
        )
        return result.scalar_one_or_none()

    async def list_open(
        self,
        category: str | None = None,
        city: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Job], int]:
        """Jobs still accepting bids, newest first."""
        conditions = [Job.status.in_(sorted(BIDDABLE_STATUSES))]
        if category:
            conditions.append(Job.category == category)
        if city:
            conditions.append(Job.city_key == Job.city_key_for(city))

        total = await self.db.scalar(select(func.count(Job.id)).where(*conditions))
        result = await self.db.scalars(
            select(Job)
            .where(*conditions)
            .order_by(Job.created_at.desc(), Job.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result), total or 0

    # === Transitions ===

    def _apply(self, job: Job, target: JobStatus) -> bool:
        """Move ``job`` to ``target``. False when it is already there."""
        previous = job.status
        if not JOB_TRANSITIONS.plan(previous, target):
            return False
        job.status = target.value
        record_job_transition(previous, target.value)
        logger.info("Job transition", job_id=str(job.id), from_status=previous, to_status=target.value)
        return True

    def _require_owner(self, job: Job, actor: User | None) -> None:
        if actor is None or actor.role == UserRole.ADMIN.value:
            return
        if job.citizen_id != actor.id:
            raise ForbiddenError("Only the job owner can do this")

    async def create_job(self, citizen: User, data: JobCreate) -> Job:
        """Post a new job in OPEN and announce it to available electricians."""
        if not citizen.is_citizen:
            raise ForbiddenError("Only citizens can post jobs")

        job = Job(
            citizen_id=citizen.id,
            title=data.title,
            description=data.description,
            category=data.category.value,
            urgency=data.urgency.value,
            estimated_budget=data.estimated_budget,
            location=data.location.model_dump(exclude_none=True),
            city_key=Job.city_key_for(data.location.city),
            status=JobStatus.OPEN.value,
            bid_count=0,
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        record_job_transition("none", JobStatus.OPEN.value)
        logger.info("Job created", job_id=str(job.id), category=job.category, city=job.city)

        self.dispatcher.publish(
            JobNew(
                job_id=job.id,
                actor_id=citizen.id,
                title=job.title,
                category=job.category,
                urgency=job.urgency,
                city=job.city,
                location_preview=job.location_preview,
                estimated_budget=job.estimated_budget,
            )
        )
        return job

    async def update_details(self, job_id: UUID, actor: User, data: JobUpdate) -> Job:
        """Edit an OPEN/BIDDING job. Bids already placed stay as they are."""
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.lock_job(job_id)
            self._require_owner(job, actor)
            if job.status not in BIDDABLE_STATUSES:
                raise ConflictError(
                    "Only jobs that are still taking bids can be edited",
                    code="JOB_NOT_EDITABLE",
                    job_id=job.id,
                    status=job.status,
                )

            changes = data.model_dump(exclude_unset=True, exclude={"location"})
            for field, value in changes.items():
                if value is None and field != "estimated_budget":
                    continue
                setattr(job, field, value.value if hasattr(value, "value") else value)
            if data.location is not None:
                job.location = {**(job.location or {}), **data.location.model_dump(exclude_unset=True)}
                job.city_key = Job.city_key_for(job.city)
                changes["location"] = job.location
            await self.db.commit()

        await self.db.refresh(job)
        logger.info("Job updated", job_id=str(job.id), fields=sorted(changes))
        return job

    def mark_bidding(self, job: Job) -> bool:
        """OPEN -> BIDDING on the first bid; no-op once BIDDING."""
        return self._apply(job, JobStatus.BIDDING)

    async def advance_to_in_progress(self, job: Job, accepted_bid: Bid, bids: list[Bid]) -> EscrowAccount | None:
        """
        OPEN/BIDDING -> IN_PROGRESS for the single accepted bid, then open the escrow hold.

        Runs inside the accept critical section; ``bids`` is every bid of the job
        as currently locked.
        """
        if job.status == JobStatus.IN_PROGRESS.value and job.accepted_bid_id == accepted_bid.id:
            return await self.escrow.get_for_job(job.id)

        accepted = [bid for bid in bids if bid.status == BidStatus.ACCEPTED.value]
        if len(accepted) != 1 or accepted[0].id != accepted_bid.id:
            raise InvalidTransition("Job", job.status, JobStatus.IN_PROGRESS.value)

        self._apply(job, JobStatus.IN_PROGRESS)
        job.accepted_bid_id = accepted_bid.id
        job.assigned_electrician_id = accepted_bid.electrician_id
        return await self.escrow.open_hold(job, accepted_bid)

    async def complete(self, job_id: UUID, actor: User | None) -> Job:
        """IN_PROGRESS -> COMPLETED: release escrow, archive the conversation, open the review window."""
        event = None
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.lock_job(job_id)
            self._require_owner(job, actor)

            if JOB_TRANSITIONS.plan(job.status, JobStatus.COMPLETED):
                bid = await self.accepted_bid(job)
                await self.escrow.release(job, bid)
                await self.gate.archive(job)
                self._apply(job, JobStatus.COMPLETED)
                job.completed_at = utc_now()
                job.review_window_closes_at = job.completed_at + timedelta(days=settings.review_window_days)
                event = JobCompleted(
                    job_id=job.id,
                    actor_id=actor.id if actor else None,
                    citizen_id=job.citizen_id,
                    electrician_id=job.assigned_electrician_id,
                )
            await self.db.commit()

        if event is not None:
            self.dispatcher.publish(event)
        return job

    async def cancel(self, job_id: UUID, actor: User | None, reason: str) -> Job:
        """Any non-terminal state -> CANCELLED. ``actor=None`` is the system."""
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.lock_job(job_id)
            self._require_owner(job, actor)
            event = await self._cancel_locked(job, actor.id if actor else None, reason)
            await self.db.commit()

        if event is not None:
            self.dispatcher.publish(event)
        return job

    async def _cancel_locked(self, job: Job, actor_id: UUID | None, reason: str) -> JobCancelled | None:
        if not JOB_TRANSITIONS.plan(job.status, JobStatus.CANCELLED):
            return None

        bids = await self.lock_bids(job.id)
        await self.escrow.refund_or_void(job)
        await self.gate.archive(job)

        now = utc_now()
        participants = {job.citizen_id}
        for bid in bids:
            if bid.status == BidStatus.PENDING.value:
                bid.status = BidStatus.REJECTED.value
                bid.rejected_at = now
                participants.add(bid.electrician_id)
            elif bid.status == BidStatus.ACCEPTED.value:
                participants.add(bid.electrician_id)

        self._apply(job, JobStatus.CANCELLED)
        job.cancelled_at = now
        job.cancellation_reason = reason

        participants.discard(actor_id)
        return JobCancelled(
            job_id=job.id,
            actor_id=actor_id,
            reason=reason,
            recipient_ids=tuple(sorted(participants, key=str)),
        )

    # === Escrow entry points ===

    async def confirm_funding(self, job_id: UUID, amount: Decimal, external_reference: str) -> EscrowAccount:
        """External capture confirmed: pending_funding -> funded."""
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.lock_job(job_id)
            bid = await self.accepted_bid(job)
            escrow, changed = await self.escrow.confirm_funding(job, bid, amount, external_reference)
            await self.db.commit()

        if changed:
            logger.info("Escrow funded", job_id=str(job_id), reference=external_reference)
        return escrow

    async def expire_unfunded(self, job_id: UUID) -> Job | None:
        """
        Cancel a job whose escrow stayed pending_funding past the timeout.

        Returns the cancelled job, or None if funding arrived (or the job moved
        on) in the meantime.
        """
        cutoff = utc_now() - timedelta(minutes=settings.escrow_funding_timeout_minutes)
        event = None
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.lock_job(job_id)
            escrow = await self.escrow.get_for_job(job.id, for_update=True)
            requested_at = as_utc(escrow.funding_requested_at) if escrow else None
            if (
                escrow is None
                or escrow.status != EscrowStatus.PENDING_FUNDING.value
                or requested_at is None
                or requested_at > cutoff
            ):
                await self.db.commit()
                return None

            await self.escrow.expire(job)
            event = await self._cancel_locked(job, None, FUNDING_TIMEOUT_REASON)
            await self.db.commit()

        logger.warning("Job cancelled after funding timeout", job_id=str(job_id))
        if event is not None:
            self.dispatcher.publish(event)
        return job

    async def find_expired_funding(self, limit: int = 100) -> list[UUID]:
        """Job ids whose escrow has been pending_funding for longer than the timeout."""
        cutoff = utc_now() - timedelta(minutes=settings.escrow_funding_timeout_minutes)
        result = await self.db.execute(
            select(EscrowAccount.job_id)
            .where(
                EscrowAccount.status == EscrowStatus.PENDING_FUNDING.value,
                EscrowAccount.funding_requested_at < cutoff,
            )
            .order_by(EscrowAccount.funding_requested_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    # === Reviews ===

    async def review(self, job_id: UUID, reviewer: User, rating: int, comment: str | None) -> Review:
        """The owner rates the electrician once, within the review window."""
        async with critical_section(self.db, self.locks.job(job_id)):
            job = await self.lock_job(job_id)
            if job.citizen_id != reviewer.id:
                raise ForbiddenError("Only the job owner can review this job")
            if job.status != JobStatus.COMPLETED.value:
                raise ConflictError("Only completed jobs can be reviewed", code="JOB_NOT_COMPLETED")
            closes_at = as_utc(job.review_window_closes_at)
            if closes_at is not None and utc_now() > closes_at:
                raise ConflictError("The review window for this job has closed", code="REVIEW_WINDOW_CLOSED")

            existing = await self.db.execute(select(Review.id).where(Review.job_id == job.id))
            if existing.first() is not None:
                raise ConflictError("This job has already been reviewed", code="ALREADY_REVIEWED")

            review = Review(
                job_id=job.id,
                reviewer_id=reviewer.id,
                reviewed_id=job.assigned_electrician_id,
                rating=rating,
                comment=comment,
            )
            self.db.add(review)
            try:
                await self.db.flush()
            except IntegrityError:
                raise ConflictError("This job has already been reviewed", code="ALREADY_REVIEWED")

            await self._refresh_rating(job.assigned_electrician_id)
            await self.db.commit()

        await self.db.refresh(review)
        logger.info("Review created", job_id=str(job_id), rating=rating)
        return review

    async def _refresh_rating(self, electrician_id: UUID) -> None:
        stats = await self.db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.reviewed_id == electrician_id)
        )
        average, total = stats.one()
        electrician = await self.db.get(User, electrician_id)
        if electrician is None:
            return
        electrician.rating_average = Decimal(str(average or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        electrician.total_reviews = total


