"""
Jobs Module - Database Models

Job: a citizen's service request and the state machine around it.
Review: the citizen's rating of the electrician once the job is completed.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models import Base, Money
from src.core.state_machine import TransitionTable
from src.modules.auth.models import ServiceCategory


class JobStatus(str, Enum):
    OPEN = "open"
    BIDDING = "bidding"          # cosmetic sub-state of OPEN: at least one bid arrived
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class JobUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


JOB_TRANSITIONS = TransitionTable(
    "Job",
    JobStatus,
    {
        JobStatus.OPEN: frozenset({JobStatus.BIDDING, JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
        JobStatus.BIDDING: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
        JobStatus.IN_PROGRESS: frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED}),
        JobStatus.COMPLETED: frozenset(),
        JobStatus.CANCELLED: frozenset(),
    },
)

# Statuses in which bids may be submitted or accepted
BIDDABLE_STATUSES = frozenset({JobStatus.OPEN.value, JobStatus.BIDDING.value})

json_type = JSON().with_variant(JSONB, "postgresql")


class Job(Base):
    """Service request posted by a citizen."""

    __table_args__ = (
        Index("idx_job_status_category", "status", "category"),
        Index("idx_job_status_city_key", "status", "city_key"),
    )

    citizen_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ServiceCategory.ELEKTRIK.value,
    )
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default=JobUrgency.MEDIUM.value)
    estimated_budget: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.OPEN.value,
        index=True,
    )

    # Snapshot: address, city, district, latitude, longitude
    location: Mapped[dict] = mapped_column(json_type, nullable=False, default=dict)
    # Casefolded location city, used by the open-job feed filter
    city_key: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Set when a bid is accepted; plain columns so bids can be torn down before jobs
    accepted_bid_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    assigned_electrician_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_window_closes_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def city(self) -> str | None:
        return (self.location or {}).get("city")

    @staticmethod
    def city_key_for(city: str | None) -> str | None:
        return city.strip().casefold() if city else None

    @property
    def location_preview(self) -> str | None:
        """District if known, otherwise city. Never the full address."""
        location = self.location or {}
        return location.get("district") or location.get("city")

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.status}>"


class Review(Base):
    """One review per completed job, written by the job owner."""

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="rating_range"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("job.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    reviewed_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
