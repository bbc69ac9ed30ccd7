"""Payment session database model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.database import Base


class PaymentSessionRecord(Base):
    """Payment session model."""

    __tablename__ = "payment_sessions"
    __table_args__ = (
        # At most one active session per booking
        Index(
            "uq_payment_sessions_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    payment_id: Mapped[str] = mapped_column(String(40), primary_key=True)  # PAY-XXXXXXXX-XXXXXXXX
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )
    booking_reference: Mapped[str] = mapped_column(String(40), nullable=False)

    # Amount
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="VND")

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default="active"
    )  # active, completed, cancelled, expired
    payment_reference: Mapped[str | None] = mapped_column(String(40))  # PAYR-XXXXXXXX-XXXXXX
    failure_reason: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
