"""
Escrow Module - Service Layer

EscrowController is the only writer of EscrowAccount and Payment rows. It
never commits and never locks: every method runs inside the caller's job
critical section and transaction, so an escrow failure rolls back the job
transition that triggered it.
"""
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import EscrowNotFunded, InternalInconsistency, InvalidTransition, ValidationError
from src.core.logging import get_logger
from src.core.metrics import record_escrow_transition
from src.core.models import utc_now
from src.modules.bids.models import Bid
from src.modules.escrow.models import (
    ESCROW_TRANSITIONS,
    HELD_STATUSES,
    EscrowAccount,
    EscrowStatus,
    Payment,
    PaymentKind,
)
from src.modules.jobs.models import Job

logger = get_logger(__name__)


class EscrowController:
    """Escrow bookkeeping for one job at a time."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_for_job(self, job_id: UUID, *, for_update: bool = False) -> EscrowAccount | None:
        query = select(EscrowAccount).where(EscrowAccount.job_id == job_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_payments(self, escrow_id: UUID) -> list[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.escrow_id == escrow_id).order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    def _move(self, escrow: EscrowAccount, target: EscrowStatus) -> bool:
        if not ESCROW_TRANSITIONS.plan(escrow.status, target):
            return False
        logger.info(
            "Escrow transition",
            job_id=str(escrow.job_id),
            from_status=escrow.status,
            to_status=target.value,
        )
        escrow.status = target.value
        record_escrow_transition(target.value)
        return True

    def ensure_consistent(self, escrow: EscrowAccount, accepted_bid: Bid | None) -> None:
        """While funds are held, the held amount must equal the accepted bid's amount."""
        if escrow.status not in HELD_STATUSES:
            return
        if accepted_bid is None or Decimal(escrow.amount) != Decimal(accepted_bid.amount):
            raise InternalInconsistency(
                "escrow amount differs from accepted bid",
                job_id=str(escrow.job_id),
                escrow_amount=str(escrow.amount),
                bid_amount=str(accepted_bid.amount) if accepted_bid else None,
            )

    async def open_hold(self, job: Job, bid: Bid) -> EscrowAccount:
        """Create (or re-arm) the job's escrow in pending_funding for the accepted amount."""
        escrow = await self.get_for_job(job.id, for_update=True)
        if escrow is None:
            escrow = EscrowAccount(
                job_id=job.id,
                amount=bid.amount,
                currency=settings.default_currency,
                status=EscrowStatus.UNFUNDED.value,
            )
            self.db.add(escrow)
        elif escrow.status == EscrowStatus.UNFUNDED.value:
            escrow.amount = bid.amount

        if self._move(escrow, EscrowStatus.PENDING_FUNDING):
            escrow.funding_requested_at = utc_now()
        await self.db.flush()
        self.ensure_consistent(escrow, bid)
        return escrow

    async def confirm_funding(
        self,
        job: Job,
        accepted_bid: Bid | None,
        amount: Decimal,
        external_reference: str,
    ) -> tuple[EscrowAccount, bool]:
        """
        Record the external capture: pending_funding -> funded.

        Returns (escrow, changed). Re-delivery of the same capture is a no-op;
        a capture under another reference on a funded escrow is refused.
        """
        escrow = await self.get_for_job(job.id, for_update=True)
        if escrow is None:
            raise EscrowNotFunded(job.id, EscrowStatus.UNFUNDED.value)

        if escrow.status == EscrowStatus.FUNDED.value:
            existing = await self.db.execute(
                select(Payment.id).where(
                    Payment.escrow_id == escrow.id,
                    Payment.kind == PaymentKind.CAPTURE.value,
                    Payment.external_reference == external_reference,
                )
            )
            if existing.first() is not None:
                return escrow, False
            # A second capture under a new reference would double-book the hold
            raise InvalidTransition("EscrowAccount", escrow.status, EscrowStatus.FUNDED.value)

        if Decimal(amount) != Decimal(escrow.amount):
            raise ValidationError(
                "Captured amount does not match the escrow amount",
                expected=str(escrow.amount),
                received=str(amount),
            )

        self.ensure_consistent(escrow, accepted_bid)
        if not self._move(escrow, EscrowStatus.FUNDED):
            return escrow, False
        escrow.funded_at = utc_now()
        self.db.add(
            Payment(
                escrow_id=escrow.id,
                kind=PaymentKind.CAPTURE.value,
                amount=escrow.amount,
                currency=escrow.currency,
                external_reference=external_reference,
                counterparty_id=job.citizen_id,
            )
        )
        await self.db.flush()
        return escrow, True

    async def release(self, job: Job, accepted_bid: Bid | None) -> EscrowAccount:
        """funded -> released, paying the accepted electrician."""
        escrow = await self.get_for_job(job.id, for_update=True)
        if escrow is None or escrow.status != EscrowStatus.FUNDED.value:
            raise EscrowNotFunded(job.id, escrow.status if escrow else EscrowStatus.UNFUNDED.value)

        self.ensure_consistent(escrow, accepted_bid)
        self._move(escrow, EscrowStatus.RELEASED)
        escrow.released_at = utc_now()
        self.db.add(
            Payment(
                escrow_id=escrow.id,
                kind=PaymentKind.PAYOUT.value,
                amount=escrow.amount,
                currency=escrow.currency,
                counterparty_id=job.assigned_electrician_id,
            )
        )
        await self.db.flush()
        return escrow

    async def refund_or_void(self, job: Job) -> EscrowAccount | None:
        """
        Undo the hold on cancellation.

        funded -> refunded (money goes back to the citizen), pending_funding ->
        unfunded (nothing was captured). Terminal or absent escrows are left alone.
        """
        escrow = await self.get_for_job(job.id, for_update=True)
        if escrow is None:
            return None

        if escrow.status == EscrowStatus.FUNDED.value:
            self._move(escrow, EscrowStatus.REFUNDED)
            escrow.refunded_at = utc_now()
            self.db.add(
                Payment(
                    escrow_id=escrow.id,
                    kind=PaymentKind.REFUND.value,
                    amount=escrow.amount,
                    currency=escrow.currency,
                    counterparty_id=job.citizen_id,
                )
            )
        elif escrow.status == EscrowStatus.PENDING_FUNDING.value:
            self._move(escrow, EscrowStatus.UNFUNDED)

        await self.db.flush()
        return escrow

    async def expire(self, job: Job) -> EscrowAccount | None:
        """pending_funding -> unfunded once the funding window has lapsed."""
        escrow = await self.get_for_job(job.id, for_update=True)
        if escrow is None or escrow.status != EscrowStatus.PENDING_FUNDING.value:
            return None
        self._move(escrow, EscrowStatus.UNFUNDED)
        await self.db.flush()
        return escrow
