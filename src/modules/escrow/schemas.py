"""
Escrow Module - Pydantic Schemas
"""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    amount: Decimal
    currency: str
    external_reference: str | None
    counterparty_id: UUID | None
    created_at: datetime


class EscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    amount: Decimal
    currency: str
    status: str
    funding_requested_at: datetime | None
    funded_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    payments: list[PaymentResponse] = []


class CaptureConfirmation(BaseModel):
    """Callback body sent by the payment provider once the citizen has paid."""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    external_reference: str = Field(..., min_length=1, max_length=255)
