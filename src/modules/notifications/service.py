"""
Push device tokens.

A token belongs to whichever user registered it last. Unregistering only
deactivates the row so delivery history keeps its reference.
"""
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import NotFoundError
from src.core.logging import get_logger
from src.modules.notifications.models import DeviceToken

logger = get_logger(__name__)


class DeviceTokenService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(self, user_id: uuid.UUID, token: str, platform: str) -> DeviceToken:
        device = await self.db.scalar(select(DeviceToken).where(DeviceToken.token == token))
        if device is None:
            device = DeviceToken(token=token)
            self.db.add(device)
        elif device.user_id != user_id:
            logger.info("Device token changed owner", previous_user_id=str(device.user_id))

        device.user_id = user_id
        device.platform = platform
        device.is_active = True
        device.failed_count = 0
        await self.db.commit()
        await self.db.refresh(device)

        logger.info("Device token registered", user_id=str(user_id), platform=platform)
        return device

    async def list_active(self, user_id: uuid.UUID) -> list[DeviceToken]:
        rows = await self.db.scalars(
            select(DeviceToken)
            .where(DeviceToken.user_id == user_id, DeviceToken.is_active.is_(True))
            .order_by(DeviceToken.created_at)
        )
        return list(rows)

    async def unregister(self, user_id: uuid.UUID, token: str) -> None:
        """Deactivate one of the user's tokens; NotFoundError if it is not active."""
        deactivate = (
            update(DeviceToken)
            .where(DeviceToken.user_id == user_id, DeviceToken.token == token, DeviceToken.is_active.is_(True))
            .values(is_active=False)
        )
        if (await self.db.execute(deactivate)).rowcount == 0:
            raise NotFoundError("Device token", token[:12])
        await self.db.commit()
        logger.info("Device token unregistered", user_id=str(user_id))
