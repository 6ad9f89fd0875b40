"""
Notifications Module - Pydantic Schemas
"""
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DevicePlatform(str, Enum):
    WEB = "web"
    ANDROID = "android"
    IOS = "ios"


class DeviceTokenRegisterRequest(BaseModel):
    """Push token registration."""
    token: str = Field(..., min_length=10, max_length=500, description="Firebase Cloud Messaging token")
    platform: DevicePlatform = DevicePlatform.ANDROID


class DeviceTokenResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    platform: str
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None


class DeviceTokenListResponse(BaseModel):
    tokens: list[DeviceTokenResponse]
    total: int
