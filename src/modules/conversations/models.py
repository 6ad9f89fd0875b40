"""
Conversations Module - Database Models
"""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models import Base


class Conversation(Base):
    """
    Messaging channel between a job owner and the accepted electrician.

    Exists only once a bid on the job has been accepted. After completion or
    cancellation it is archived: readable, but closed for new messages.
    """

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("job.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    citizen_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    electrician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_message_preview: Mapped[str | None] = mapped_column(String(120), nullable=True)
    citizen_unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    electrician_unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.citizen_id, self.electrician_id)

    def other_participant(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.electrician_id if user_id == self.citizen_id else self.citizen_id


class Message(Base):
    __table_args__ = (
        Index("idx_message_conversation_created", "conversation_id", "created_at"),
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("conversation.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
