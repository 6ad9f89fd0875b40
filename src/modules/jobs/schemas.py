"""
Jobs Module - Pydantic Schemas
"""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.modules.auth.models import ServiceCategory
from src.modules.jobs.models import JobUrgency


class JobLocation(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    district: str | None = Field(None, max_length=100)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class JobCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=1)
    category: ServiceCategory = ServiceCategory.ELEKTRIK
    urgency: JobUrgency = JobUrgency.MEDIUM
    estimated_budget: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    location: JobLocation


class JobLocationUpdate(BaseModel):
    address: str | None = Field(None, min_length=1, max_length=500)
    city: str | None = Field(None, min_length=1, max_length=100)
    district: str | None = Field(None, max_length=100)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class JobUpdate(BaseModel):
    """Owner edits while the job is still taking bids. Location fields are merged."""

    title: str | None = Field(None, min_length=3, max_length=200)
    description: str | None = Field(None, min_length=1)
    category: ServiceCategory | None = None
    urgency: JobUrgency | None = None
    estimated_budget: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    location: JobLocationUpdate | None = None


class JobCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    citizen_id: UUID
    title: str
    description: str
    category: str
    urgency: str
    estimated_budget: Decimal | None
    status: str
    location: dict
    bid_count: int
    accepted_bid_id: UUID | None
    assigned_electrician_id: UUID | None
    completed_at: datetime | None
    review_window_closes_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    reviewer_id: UUID
    reviewed_id: UUID
    rating: int
    comment: str | None
    created_at: datetime
