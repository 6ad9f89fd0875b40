"""
Notifications Module - FastAPI Dependencies

The registry and dispatcher are built once by the application factory and
live on ``app.state``.
"""
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from src.core.database import get_db
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.service import DeviceTokenService
from src.modules.notifications.sessions import SessionRegistry


def get_session_registry(connection: HTTPConnection) -> SessionRegistry:
    return connection.app.state.sessions


def get_dispatcher(connection: HTTPConnection) -> NotificationDispatcher:
    return connection.app.state.dispatcher


async def get_device_token_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DeviceTokenService:
    """Get DeviceTokenService instance with injected database session."""
    return DeviceTokenService(db)


# Type aliases
SessionRegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]
DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
DeviceTokenServiceDep = Annotated[DeviceTokenService, Depends(get_device_token_service)]
