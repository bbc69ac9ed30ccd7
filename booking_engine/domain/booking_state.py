"""Booking state machine."""

from booking_engine.core.exceptions import InvalidTransitionError
from booking_engine.domain.entities import BookingStatus

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.EXPIRED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
    BookingStatus.EXPIRED: set(),
}


def is_terminal(status: str) -> bool:
    return not BOOKING_TRANSITIONS.get(BookingStatus(status), set())


def assert_booking_transition(current: str, target: str) -> None:
    allowed = BOOKING_TRANSITIONS.get(BookingStatus(current), set())
    if BookingStatus(target) not in allowed:
        raise InvalidTransitionError(
            f"Invalid booking transition: {BookingStatus(current).value} → {BookingStatus(target).value}"
        )
