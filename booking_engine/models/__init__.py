"""Database models."""

from booking_engine.models.booking import BookingRecord, SeatLockRecord
from booking_engine.models.payment import PaymentSessionRecord
from booking_engine.models.schedule import ScheduleRecord

__all__ = [
    # Schedule
    "ScheduleRecord",
    # Booking
    "BookingRecord",
    "SeatLockRecord",
    # Payment
    "PaymentSessionRecord",
]
