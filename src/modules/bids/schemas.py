"""
Bids Module - Pydantic Schemas
"""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BidCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    estimated_duration_hours: int = Field(..., gt=0, le=24 * 30)
    message: str = Field(..., min_length=1, max_length=2000)

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value.strip()


class BidUpdate(BaseModel):
    amount: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    estimated_duration_hours: int | None = Field(None, gt=0, le=24 * 30)
    message: str | None = Field(None, min_length=1, max_length=2000)


class BidResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    electrician_id: UUID
    amount: Decimal
    estimated_duration_hours: int
    message: str
    status: str
    accepted_at: datetime | None
    rejected_at: datetime | None
    withdrawn_at: datetime | None
    created_at: datetime


class BidListResponse(BaseModel):
    bids: list[BidResponse]
    total: int


class BidAcceptResponse(BaseModel):
    bid: BidResponse
    job_id: UUID
    job_status: str
    escrow_status: str | None
    conversation_id: UUID | None
