"""Engine records.

Plain dataclasses so that state changes can be built and checked without a
database. Repositories store copies and map them to their own storage.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from booking_engine.schemas.booking import PricingBreakdown


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


class PaymentSessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass
class Schedule:
    """The part of a scheduled trip the booking core needs."""

    id: int
    departure_at: datetime
    arrival_at: datetime
    total_seats: int
    available_seats: int
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    departed_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SeatLock:
    """Claim on one seat of one schedule.

    expires_at is None once the seat is sold to a confirmed booking.
    booking_id is set while a booking is built on top of the lock.
    """

    schedule_id: int
    seat_number: int
    owner_session_id: str
    acquired_at: datetime
    expires_at: datetime | None
    booking_id: uuid.UUID | None = None

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


@dataclass
class Booking:
    """Seat booking on one schedule."""

    booking_reference: str
    schedule_id: int
    seat_numbers: list[int]
    passengers: list[dict[str, Any]]
    pricing: PricingBreakdown
    owner_session_id: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None
    status: BookingStatus = BookingStatus.PENDING
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    customer_id: int | None = None
    guest_identifier: str | None = None
    payment_reference: str | None = None
    cancellation_reason: str | None = None
    refund_amount: int = 0
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def total_pay(self) -> int:
        return self.pricing.total_pay


@dataclass
class PaymentSession:
    """Bounded-lifetime payment attempt for a pending booking."""

    payment_id: str
    booking_id: uuid.UUID
    booking_reference: str
    amount: int
    currency: str
    created_at: datetime
    expires_at: datetime
    status: PaymentSessionStatus = PaymentSessionStatus.ACTIVE
    payment_reference: str | None = None
    failure_reason: str | None = None
    completed_at: datetime | None = None
