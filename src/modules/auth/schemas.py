"""
Auth Module - Pydantic Schemas
"""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.modules.auth.models import ServiceCategory


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: str
    role: str
    is_active: bool
    is_available: bool
    service_category: str
    city: str | None
    rating_average: Decimal
    total_reviews: int
    created_at: datetime


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = Field(None, min_length=1, max_length=255)
    phone: str | None = Field(None, max_length=32)
    city: str | None = Field(None, max_length=100)
    is_available: bool | None = None
    service_category: ServiceCategory | None = None
