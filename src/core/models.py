"""
Declarative base shared by every table.

Each model gets a UUID primary key and UTC ``created_at``/``updated_at``.
Table names are the snake_case class name (``EscrowAccount`` ->
``escrow_account``); constraint names follow one convention so Alembic
migrations stay stable.
"""
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, MetaData, Numeric, Uuid, text
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# Bid amounts, escrow holds and payments; compared for equality, never floats
Money = Numeric(12, 2, asdecimal=True)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from drivers that drop the offset."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    metadata = metadata

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return _CAMEL_BOUNDARY.sub("_", cls.__name__).lower()

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    def __repr__(self) -> str:
        status = getattr(self, "status", None)
        suffix = f" status={status}" if status is not None else ""
        return f"<{type(self).__name__} {self.id}{suffix}>"
