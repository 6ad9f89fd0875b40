"""
Conversations Module - API Routes

- GET  /api/v1/conversations                  - my conversations
- GET  /api/v1/conversations/{id}/messages    - message history (newest page last)
- POST /api/v1/conversations/{id}/messages    - send a message
- POST /api/v1/conversations/{id}/read        - mark my incoming messages read

Only the job owner and the accepted electrician see a conversation; everyone
else gets 404.
"""
from uuid import UUID

from fastapi import APIRouter, Query, status

from src.modules.auth.dependencies import CurrentUser
from src.modules.conversations.dependencies import ConversationGateDep
from src.modules.conversations.schemas import (
    ConversationListResponse,
    ConversationResponse,
    MessageCreate,
    MessageListResponse,
    MessageResponse,
)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    current_user: CurrentUser,
    gate: ConversationGateDep,
):
    conversations = await gate.list_for_user(current_user.id)
    return ConversationListResponse(conversations=conversations, total=len(conversations))


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: UUID,
    current_user: CurrentUser,
    gate: ConversationGateDep,
    limit: int = Query(50, ge=1, le=200),
    before: UUID | None = Query(None, description="Message id to page backwards from"),
):
    messages = await gate.list_messages(conversation_id, current_user.id, limit=limit, before=before)
    return MessageListResponse(messages=messages, total=len(messages))


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    data: MessageCreate,
    current_user: CurrentUser,
    gate: ConversationGateDep,
):
    """Archived conversations answer 409."""
    return await gate.send_message(conversation_id, current_user.id, data.content)


@router.post("/{conversation_id}/read", response_model=ConversationResponse)
async def mark_read(
    conversation_id: UUID,
    current_user: CurrentUser,
    gate: ConversationGateDep,
):
    return await gate.mark_read(conversation_id, current_user.id)
