"""
Notifications Module - API Router

- GET    /api/v1/notifications/device-tokens          - my active push tokens
- POST   /api/v1/notifications/device-tokens          - register push token
- DELETE /api/v1/notifications/device-tokens/{token}  - unregister push token
"""
from fastapi import APIRouter, status

from src.modules.auth.dependencies import CurrentUser
from src.modules.notifications.dependencies import DeviceTokenServiceDep
from src.modules.notifications.schemas import (
    DeviceTokenListResponse,
    DeviceTokenRegisterRequest,
    DeviceTokenResponse,
)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/device-tokens", response_model=DeviceTokenListResponse)
async def list_device_tokens(
    current_user: CurrentUser,
    service: DeviceTokenServiceDep,
):
    tokens = await service.list_active(current_user.id)
    return DeviceTokenListResponse(tokens=tokens, total=len(tokens))


@router.post(
    "/device-tokens",
    response_model=DeviceTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register push token",
)
async def register_device_token(
    request: DeviceTokenRegisterRequest,
    current_user: CurrentUser,
    service: DeviceTokenServiceDep,
) -> DeviceTokenResponse:
    """
    Register a Firebase Cloud Messaging token for the current user.

    Push is used only while the user has no live SSE or WebSocket session.
    """
    device = await service.register(current_user.id, request.token, request.platform.value)
    return DeviceTokenResponse.model_validate(device)


@router.delete("/device-tokens/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_device_token(
    token: str,
    current_user: CurrentUser,
    service: DeviceTokenServiceDep,
):
    await service.unregister(current_user.id, token)
