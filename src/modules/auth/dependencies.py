"""
Request-scoped identity.

``CurrentUser`` resolves the bearer token; the role-narrowed aliases turn a
wrong role into 403 before the handler runs.
"""
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.exceptions import ForbiddenError, UnauthorizedError
from src.modules.auth.models import User
from src.modules.auth.service import AuthService

bearer = HTTPBearer(auto_error=False)


async def get_auth_service(db: Annotated[AsyncSession, Depends(get_db)]) -> AuthService:
    return AuthService(db)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    auth_service: AuthServiceDep,
) -> User:
    if credentials is None:
        raise UnauthorizedError()
    return await auth_service.authenticate(credentials.credentials)


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_role(check, message: str):
    async def dependency(user: CurrentUser) -> User:
        if not check(user):
            raise ForbiddenError(message)
        return user

    return dependency


CurrentElectrician = Annotated[
    User, Depends(require_role(lambda user: user.is_electrician, "Only electricians can perform this action"))
]
CurrentCitizen = Annotated[
    User, Depends(require_role(lambda user: user.is_citizen, "Only citizens can perform this action"))
]
