"""
Conversations Module - Service Layer

ConversationGate decides who may talk to whom. A conversation is created only
when a bid is accepted and archived when the job completes or is cancelled.
``open_for`` and ``archive`` run inside the job critical section of the
caller and do not commit; the message operations are standalone requests.
"""
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ConversationArchived, ConversationNotFound
from src.core.logging import get_logger
from src.core.models import utc_now
from src.modules.bids.models import Bid
from src.modules.conversations.models import Conversation, Message
from src.modules.jobs.models import Job
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.events import MessageNew

logger = get_logger(__name__)

PREVIEW_LENGTH = 100


class ConversationGate:
    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self.dispatcher = dispatcher

    # === Lifecycle hooks (called under the job lock) ===

    async def open_for(self, job: Job, bid: Bid) -> Conversation:
        """Exactly one conversation per job, between the owner and the accepted bidder."""
        conversation = await self.get_for_job(job.id)
        if conversation is not None:
            return conversation

        conversation = Conversation(
            job_id=job.id,
            citizen_id=job.citizen_id,
            electrician_id=bid.electrician_id,
        )
        self.db.add(conversation)
        await self.db.flush()
        logger.info("Conversation opened", job_id=str(job.id), conversation_id=str(conversation.id))
        return conversation

    async def archive(self, job: Job) -> Conversation | None:
        conversation = await self.get_for_job(job.id)
        if conversation is None or conversation.is_archived:
            return conversation
        conversation.archived_at = utc_now()
        await self.db.flush()
        logger.info("Conversation archived", job_id=str(job.id), conversation_id=str(conversation.id))
        return conversation

    # === Reads ===

    async def get_for_job(self, job_id: UUID) -> Conversation | None:
        result = await self.db.execute(select(Conversation).where(Conversation.job_id == job_id))
        return result.scalar_one_or_none()

    async def get_for_participant(self, conversation_id: UUID, user_id: UUID) -> Conversation:
        """Non-participants get the same answer as for a missing conversation."""
        result = await self.db.execute(select(Conversation).where(Conversation.id == conversation_id))
        conversation = result.scalar_one_or_none()
        if conversation is None or not conversation.has_participant(user_id):
            raise ConversationNotFound(conversation_id)
        return conversation

    async def list_for_user(self, user_id: UUID) -> list[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(or_(Conversation.citizen_id == user_id, Conversation.electrician_id == user_id))
            .order_by(Conversation.last_message_at.desc().nulls_last(), Conversation.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_messages(
        self,
        conversation_id: UUID,
        user_id: UUID,
        limit: int = 50,
        before: UUID | None = None,
    ) -> list[Message]:
        await self.get_for_participant(conversation_id, user_id)
        query = select(Message).where(Message.conversation_id == conversation_id)
        if before is not None:
            anchor = await self.db.get(Message, before)
            if anchor is not None:
                query = query.where(Message.created_at < anchor.created_at)
        query = query.order_by(Message.created_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(reversed(result.scalars().all()))

    # === Writes ===

    async def send_message(self, conversation_id: UUID, sender_id: UUID, content: str) -> Message:
        conversation = await self.get_for_participant(conversation_id, sender_id)
        if conversation.is_archived:
            raise ConversationArchived(conversation_id)

        recipient_id = conversation.other_participant(sender_id)
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content,
        )
        self.db.add(message)

        preview = content[:PREVIEW_LENGTH]
        counter = (
            Conversation.citizen_unread_count
            if recipient_id == conversation.citizen_id
            else Conversation.electrician_unread_count
        )
        # Incremented in SQL so concurrent senders do not overwrite each other
        bumped = await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id, Conversation.archived_at.is_(None))
            .values(
                {
                    counter: counter + 1,
                    Conversation.last_message_at: utc_now(),
                    Conversation.last_message_preview: preview,
                }
            )
        )
        if bumped.rowcount == 0:
            await self.db.rollback()
            raise ConversationArchived(conversation_id)

        await self.db.commit()
        await self.db.refresh(message)

        logger.info("Message sent", conversation_id=str(conversation.id), sender_id=str(sender_id))

        if self.dispatcher is not None:
            self.dispatcher.publish(
                MessageNew(
                    job_id=conversation.job_id,
                    actor_id=sender_id,
                    conversation_id=conversation.id,
                    message_id=message.id,
                    recipient_id=recipient_id,
                    preview=preview,
                )
            )
        return message

    async def mark_read(self, conversation_id: UUID, user_id: UUID) -> Conversation:
        """Mark every message addressed to the user as read. Allowed on archived conversations."""
        conversation = await self.get_for_participant(conversation_id, user_id)
        await self.db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.recipient_id == user_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=utc_now())
        )
        counter = (
            Conversation.citizen_unread_count
            if user_id == conversation.citizen_id
            else Conversation.electrician_unread_count
        )
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values({counter: 0})
        )
        await self.db.commit()
        await self.db.refresh(conversation)
        return conversation
