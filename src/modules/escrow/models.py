"""
Escrow Module - Database Models

EscrowAccount holds the accepted bid's amount for one job.
Payment is the append-only record of money actually moving.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models import Base, Money
from src.core.state_machine import TransitionTable


class EscrowStatus(str, Enum):
    UNFUNDED = "unfunded"
    PENDING_FUNDING = "pending_funding"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"


ESCROW_TRANSITIONS = TransitionTable(
    "EscrowAccount",
    EscrowStatus,
    {
        EscrowStatus.UNFUNDED: frozenset({EscrowStatus.PENDING_FUNDING}),
        EscrowStatus.PENDING_FUNDING: frozenset({EscrowStatus.FUNDED, EscrowStatus.UNFUNDED}),
        EscrowStatus.FUNDED: frozenset({EscrowStatus.RELEASED, EscrowStatus.REFUNDED}),
        EscrowStatus.RELEASED: frozenset(),
        EscrowStatus.REFUNDED: frozenset(),
    },
)

# While held, the amount must equal the accepted bid's amount
HELD_STATUSES = frozenset({EscrowStatus.PENDING_FUNDING.value, EscrowStatus.FUNDED.value})


class PaymentKind(str, Enum):
    CAPTURE = "capture"   # citizen -> escrow
    PAYOUT = "payout"     # escrow -> electrician
    REFUND = "refund"     # escrow -> citizen


class EscrowAccount(Base):
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("job.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowStatus.UNFUNDED.value,
        index=True,
    )

    funding_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<EscrowAccount job={self.job_id} {self.status} {self.amount}>"


class Payment(Base):
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("escrow_account.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    counterparty_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="SET NULL"),
        nullable=True,
    )
