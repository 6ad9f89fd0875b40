"""
Auth Module - Database Models
Users are provisioned by the identity provider; this service only reads them
and keeps the marketplace profile (role, availability, rating).
"""
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models import Base


class UserRole(str, Enum):
    CITIZEN = "citizen"
    ELECTRICIAN = "electrician"
    ADMIN = "admin"


class ServiceCategory(str, Enum):
    """Trades a job can be posted for."""
    ELEKTRIK = "elektrik"
    CILINGIR = "cilingir"
    KLIMA = "klima"
    BEYAZ_ESYA = "beyaz-esya"
    TESISAT = "tesisat"


class User(Base):
    """
    Marketplace participant.

    Citizens post jobs; electricians bid on them. ``is_available`` controls
    whether an electrician's live sessions join the ``job:new`` broadcast.
    """

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserRole.CITIZEN.value,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Electrician profile
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    service_category: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ServiceCategory.ELEKTRIK.value,
    )
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rating_average: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0"), nullable=False)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def is_electrician(self) -> bool:
        return self.role == UserRole.ELECTRICIAN.value

    @property
    def is_citizen(self) -> bool:
        return self.role == UserRole.CITIZEN.value

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
