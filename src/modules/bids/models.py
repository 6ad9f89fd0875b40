"""
Bids Module - Database Models
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models import Base, Money


class BidStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


ACTIVE_BID_STATUSES = (BidStatus.PENDING.value, BidStatus.ACCEPTED.value)

_active_clause = text("status IN ('pending', 'accepted')")


class Bid(Base):
    """An electrician's offer on a job."""

    __table_args__ = (
        # At most one active bid per (job, bidder); withdrawn/rejected bids do not count
        Index(
            "uq_bid_active_per_bidder",
            "job_id",
            "electrician_id",
            unique=True,
            postgresql_where=_active_clause,
            sqlite_where=_active_clause,
        ),
        Index("idx_bid_job_status", "job_id", "status"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("job.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    electrician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    estimated_duration_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BidStatus.PENDING.value)

    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BID_STATUSES

    def __repr__(self) -> str:
        return f"<Bid {self.id} {self.status} {self.amount}>"
