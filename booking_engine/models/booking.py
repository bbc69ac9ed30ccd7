"""Booking-related database models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.database import Base


class SeatLockRecord(Base):
    """Hold on one seat of one schedule."""

    __tablename__ = "seat_locks"
    __table_args__ = (
        UniqueConstraint("schedule_id", "seat_number", name="uq_seat_locks_schedule_seat"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seat_number: Mapped[int] = mapped_column(Integer, nullable=False)
    owner_session_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    booking_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True
    )  # NULL once the seat is sold


class BookingRecord(Base):
    """Booking model."""

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_reference: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )  # BKG-XXXXXXXX-XXXX
    schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("schedules.id"), nullable=False, index=True
    )
    owner_session_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Customer or guest
    customer_id: Mapped[int | None] = mapped_column(Integer, index=True)
    guest_identifier: Mapped[str | None] = mapped_column(String(50), index=True)

    # Seats & passengers
    seat_numbers: Mapped[list] = mapped_column(JSON, nullable=False)
    passengers: Mapped[list] = mapped_column(JSON, nullable=False)

    # Pricing (whole VND)
    price_per_seat: Mapped[int] = mapped_column(Integer, nullable=False)
    num_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    base_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    bus_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    convenience_fee: Mapped[int] = mapped_column(Integer, default=0)
    bank_charge: Mapped[int] = mapped_column(Integer, default=0)
    total_pay: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="VND")

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending, confirmed, cancelled, completed, expired
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    payment_reference: Mapped[str | None] = mapped_column(String(40))

    # Cancellation
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    refund_amount: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
