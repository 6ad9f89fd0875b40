"""
Conversations Module - FastAPI Dependencies
"""
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.modules.conversations.service import ConversationGate
from src.modules.notifications.dependencies import DispatcherDep


async def get_conversation_gate(
    db: Annotated[AsyncSession, Depends(get_db)],
    dispatcher: DispatcherDep,
) -> ConversationGate:
    return ConversationGate(db, dispatcher)


# Type aliases
ConversationGateDep = Annotated[ConversationGate, Depends(get_conversation_gate)]
