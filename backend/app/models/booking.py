from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType

if TYPE_CHECKING:  # pragma: no cover
    from .listing import Listing
    from .user import User


ACCEPTED_TRANSITIONS = frozenset({"transition/accept", "transition/operator-accept"})


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    listing_id: Mapped[str | None] = mapped_column(ForeignKey("listings.id", ondelete="SET NULL"))
    customer_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    provider_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    last_transition: Mapped[str | None] = mapped_column(String(64))
    # Operator-only data; never exposed through listing or public fields.
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    listing: Mapped[Optional["Listing"]] = relationship(lazy="selectin")
    customer: Mapped[Optional["User"]] = relationship(foreign_keys=[customer_id], lazy="selectin")
    provider: Mapped[Optional["User"]] = relationship(foreign_keys=[provider_id], lazy="selectin")
    booking: Mapped[Optional["Booking"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    @property
    def is_accepted(self) -> bool:
        return self.last_transition in ACCEPTED_TRANSITIONS


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    transaction_id: Mapped[str] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    transaction: Mapped[Transaction] = relationship(back_populates="booking")
