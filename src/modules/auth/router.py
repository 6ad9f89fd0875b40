"""
Auth Module - Profile Endpoints

- GET   /api/v1/auth/me  - current user
- PATCH /api/v1/auth/me  - availability, category, city
"""
from fastapi import APIRouter

from src.modules.auth.dependencies import AuthServiceDep, CurrentUser
from src.modules.auth.schemas import ProfileUpdateRequest, UserResponse
from src.modules.notifications.dependencies import SessionRegistryDep

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser):
    """Current user's profile."""
    return current_user


@router.patch("/me", response_model=UserResponse)
async def update_me(
    data: ProfileUpdateRequest,
    current_user: CurrentUser,
    auth_service: AuthServiceDep,
    sessions: SessionRegistryDep,
):
    """Update profile. Electricians toggle ``is_available`` to join or leave the job feed."""
    user = await auth_service.update_profile(current_user, data)
    if data.is_available is not None:
        await sessions.set_availability(user.id, user.is_available)
    return user
