"""
Users as the marketplace sees them.

Accounts live with the identity provider; this service resolves bearer
tokens to local user rows and edits the electrician work profile.
"""
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ForbiddenError, UnauthorizedError
from src.core.logging import bind_context, get_logger
from src.core.security import token_subject
from src.modules.auth.models import User
from src.modules.auth.schemas import ProfileUpdateRequest

logger = get_logger(__name__)


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.db.scalar(select(User).where(User.id == user_id))

    async def authenticate(self, token: str) -> User:
        """Active user behind a bearer token, or UnauthorizedError."""
        user_id = token_subject(token)
        if user_id is None:
            raise UnauthorizedError("Invalid or expired token")

        user = await self.get_user_by_id(user_id)
        if user is None:
            logger.warning("Token subject has no user", user_id=str(user_id))
            raise UnauthorizedError("Unknown user")
        if not user.is_active:
            raise UnauthorizedError("User account is disabled")

        bind_context(user_id=str(user.id))
        return user

    async def update_profile(self, user: User, request: ProfileUpdateRequest) -> User:
        """Update availability, category and city. Only electricians carry a work profile."""
        changes = request.model_dump(exclude_unset=True)
        if not user.is_electrician and {"is_available", "service_category"} & changes.keys():
            raise ForbiddenError("Only electricians have a work profile")

        for field, value in changes.items():
            if value is not None and hasattr(value, "value"):
                value = value.value
            setattr(user, field, value)

        await self.db.commit()
        await self.db.refresh(user)

        logger.info("Profile updated", user_id=str(user.id), fields=sorted(changes))
        return user
