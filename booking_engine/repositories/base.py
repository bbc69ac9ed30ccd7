"""Repository interface.

Every method is atomic on its own: status changes are compare-and-set and
multi-seat writes are all-or-nothing. Repositories store copies; mutating a
returned record has no effect until it is written back.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from booking_engine.domain.entities import (
    Booking,
    BookingStatus,
    PaymentSession,
    PaymentSessionStatus,
    Schedule,
    ScheduleStatus,
    SeatLock,
)


class Repository(ABC):
    """Storage for schedules, seat locks, bookings and payment sessions."""

    # ==================== SCHEDULES ====================

    @abstractmethod
    async def add_schedule(self, schedule: Schedule) -> None:
        pass

    @abstractmethod
    async def get_schedule(self, schedule_id: int) -> Schedule | None:
        pass

    @abstractmethod
    async def list_schedules(self, status: ScheduleStatus) -> list[Schedule]:
        pass

    @abstractmethod
    async def set_schedule_status(
        self,
        schedule_id: int,
        expected: ScheduleStatus,
        status: ScheduleStatus,
        at: datetime,
    ) -> bool:
        """Move a schedule to `status` only if it is still `expected`.

        Sets departed_at when moving to in_progress and completed_at when moving
        to completed.
        """

    @abstractmethod
    async def adjust_available_seats(self, schedule_id: int, delta: int) -> bool:
        """Add `delta` to the available seat counter unless it would leave [0, total_seats]."""

    # ==================== SEAT LOCKS ====================

    @abstractmethod
    async def get_seat_locks(
        self, schedule_id: int, seat_numbers: list[int] | None = None
    ) -> list[SeatLock]:
        pass

    @abstractmethod
    async def list_seat_locks_for_owner(self, owner_session_id: str) -> list[SeatLock]:
        pass

    @abstractmethod
    async def put_seat_locks(self, locks: list[SeatLock], now: datetime) -> list[int]:
        """Write locks for one schedule, all or nothing.

        A seat is writable when it has no lock, its lock expired at `now`, or it
        holds an unbound live lock of the same owner.

        Returns:
            list: Seat numbers that were not writable; nothing is written unless empty
        """

    @abstractmethod
    async def delete_seat_locks(
        self, schedule_id: int, seat_numbers: list[int], owner_session_id: str
    ) -> int:
        """Delete the owner's unbound, non-permanent locks on these seats."""

    @abstractmethod
    async def extend_seat_locks(
        self, owner_session_id: str, now: datetime, expires_at: datetime
    ) -> list[SeatLock]:
        """Push the expiry of every live lock of the owner not yet bound to a booking."""

    @abstractmethod
    async def bind_seat_locks(
        self,
        schedule_id: int,
        seat_numbers: list[int],
        owner_session_id: str,
        booking_id: UUID,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Attach live unbound locks of the owner to a booking, all or nothing."""

    @abstractmethod
    async def delete_booking_seat_locks(self, booking_id: UUID) -> int:
        pass

    @abstractmethod
    async def delete_expired_seat_locks(self, now: datetime) -> int:
        pass

    # ==================== BOOKINGS ====================

    @abstractmethod
    async def add_booking(self, booking: Booking) -> bool:
        """Insert a booking. Returns False if its reference is already taken."""

    @abstractmethod
    async def get_booking(self, booking_id: UUID) -> Booking | None:
        pass

    @abstractmethod
    async def get_booking_by_reference(self, booking_reference: str) -> Booking | None:
        pass

    @abstractmethod
    async def compare_and_set_booking(self, booking: Booking, expected: BookingStatus) -> bool:
        """Replace the stored booking only if its status is still `expected`."""

    @abstractmethod
    async def confirm_booking(self, booking: Booking, now: datetime) -> bool:
        """Store a confirmed booking and sell its seats in one step.

        Succeeds only if the stored booking is still pending and every one of its
        seats has a lock bound to it that is live at `now`. Those locks become
        permanent. On failure nothing is written.
        """

    @abstractmethod
    async def list_bookings_for_customer(
        self, customer_id: int, statuses: list[BookingStatus] | None = None
    ) -> list[Booking]:
        """A customer's bookings, newest first, optionally limited to `statuses`."""

    @abstractmethod
    async def list_bookings(
        self,
        status: BookingStatus,
        schedule_id: int | None = None,
        expires_before: datetime | None = None,
    ) -> list[Booking]:
        """Bookings in `status`, optionally for one schedule or with expires_at <= expires_before."""

    # ==================== PAYMENT SESSIONS ====================

    @abstractmethod
    async def add_payment_session(self, session: PaymentSession) -> bool:
        """Insert a session. Returns False if the booking already has an active one."""

    @abstractmethod
    async def get_payment_session(self, payment_id: str) -> PaymentSession | None:
        pass

    @abstractmethod
    async def get_active_payment_session(self, booking_id: UUID) -> PaymentSession | None:
        pass

    @abstractmethod
    async def list_payment_sessions(
        self, status: PaymentSessionStatus, expires_before: datetime | None = None
    ) -> list[PaymentSession]:
        """Sessions in `status`, optionally only those with expires_at <= expires_before."""

    @abstractmethod
    async def compare_and_set_payment_session(
        self, session: PaymentSession, expected: PaymentSessionStatus
    ) -> bool:
        pass
