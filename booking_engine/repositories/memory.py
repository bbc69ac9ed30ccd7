"""In-process repository.

Methods never await while touching state, so each call is atomic with
respect to other coroutines on the same event loop.
"""

import copy
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
from booking_engine.repositories.base import Repository


class InMemoryRepository(Repository):
    """Dictionary-backed repository for tests and single-process use."""

    def __init__(self) -> None:
        self._schedules: dict[int, Schedule] = {}
        self._locks: dict[tuple[int, int], SeatLock] = {}
        self._bookings: dict[UUID, Booking] = {}
        self._references: dict[str, UUID] = {}
        self._sessions: dict[str, PaymentSession] = {}

    # ==================== SCHEDULES ====================

    async def add_schedule(self, schedule: Schedule) -> None:
        self._schedules[schedule.id] = copy.deepcopy(schedule)

    async def get_schedule(self, schedule_id: int) -> Schedule | None:
        return copy.deepcopy(self._schedules.get(schedule_id))

    async def list_schedules(self, status: ScheduleStatus) -> list[Schedule]:
        return [copy.deepcopy(s) for s in self._schedules.values() if s.status == status]

    async def set_schedule_status(
        self,
        schedule_id: int,
        expected: ScheduleStatus,
        status: ScheduleStatus,
        at: datetime,
    ) -> bool:
        schedule = self._schedules.get(schedule_id)
        if schedule is None or schedule.status != expected:
            return False
        schedule.status = status
        if status == ScheduleStatus.IN_PROGRESS:
            schedule.departed_at = at
        elif status == ScheduleStatus.COMPLETED:
            schedule.completed_at = at
        return True

    async def adjust_available_seats(self, schedule_id: int, delta: int) -> bool:
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            return False
        updated = schedule.available_seats + delta
        if not 0 <= updated <= schedule.total_seats:
            return False
        schedule.available_seats = updated
        return True

    # ==================== SEAT LOCKS ====================

    async def get_seat_locks(
        self, schedule_id: int, seat_numbers: list[int] | None = None
    ) -> list[SeatLock]:
        wanted = set(seat_numbers) if seat_numbers is not None else None
        return [
            copy.deepcopy(lock)
            for (sid, seat), lock in sorted(self._locks.items())
            if sid == schedule_id and (wanted is None or seat in wanted)
        ]

    async def list_seat_locks_for_owner(self, owner_session_id: str) -> list[SeatLock]:
        return [
            copy.deepcopy(lock)
            for _, lock in sorted(self._locks.items())
            if lock.owner_session_id == owner_session_id
        ]

    async def put_seat_locks(self, locks: list[SeatLock], now: datetime) -> list[int]:
        conflicts = []
        for lock in locks:
            current = self._locks.get((lock.schedule_id, lock.seat_number))
            if current is None or not current.is_live(now):
                continue
            if (
                current.owner_session_id != lock.owner_session_id
                or current.is_permanent
                or current.booking_id is not None
            ):
                conflicts.append(lock.seat_number)
        if conflicts:
            return sorted(conflicts)

        for lock in locks:
            self._locks[(lock.schedule_id, lock.seat_number)] = copy.deepcopy(lock)
        return []

    async def delete_seat_locks(
        self, schedule_id: int, seat_numbers: list[int], owner_session_id: str
    ) -> int:
        deleted = 0
        for seat in seat_numbers:
            lock = self._locks.get((schedule_id, seat))
            if (
                lock is not None
                and lock.owner_session_id == owner_session_id
                and lock.booking_id is None
                and not lock.is_permanent
            ):
                del self._locks[(schedule_id, seat)]
                deleted += 1
        return deleted

    async def extend_seat_locks(
        self, owner_session_id: str, now: datetime, expires_at: datetime
    ) -> list[SeatLock]:
        extended = []
        for _, lock in sorted(self._locks.items()):
            if (
                lock.owner_session_id == owner_session_id
                and lock.booking_id is None
                and not lock.is_permanent
                and lock.is_live(now)
            ):
                lock.expires_at = expires_at
                extended.append(copy.deepcopy(lock))
        return extended

    async def bind_seat_locks(
        self,
        schedule_id: int,
        seat_numbers: list[int],
        owner_session_id: str,
        booking_id: UUID,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        locks = [self._locks.get((schedule_id, seat)) for seat in seat_numbers]
        for lock in locks:
            if (
                lock is None
                or lock.owner_session_id != owner_session_id
                or lock.booking_id is not None
                or lock.is_permanent
                or not lock.is_live(now)
            ):
                return False
        for lock in locks:
            lock.booking_id = booking_id
            lock.expires_at = expires_at
        return True

    async def delete_booking_seat_locks(self, booking_id: UUID) -> int:
        keys = [key for key, lock in self._locks.items() if lock.booking_id == booking_id]
        for key in keys:
            del self._locks[key]
        return len(keys)

    async def delete_expired_seat_locks(self, now: datetime) -> int:
        keys = [key for key, lock in self._locks.items() if not lock.is_live(now)]
        for key in keys:
            del self._locks[key]
        return len(keys)

    # ==================== BOOKINGS ====================

    async def add_booking(self, booking: Booking) -> bool:
        if booking.booking_reference in self._references:
            return False
        self._bookings[booking.id] = copy.deepcopy(booking)
        self._references[booking.booking_reference] = booking.id
        return True

    async def get_booking(self, booking_id: UUID) -> Booking | None:
        return copy.deepcopy(self._bookings.get(booking_id))

    async def get_booking_by_reference(self, booking_reference: str) -> Booking | None:
        booking_id = self._references.get(booking_reference)
        if booking_id is None:
            return None
        return copy.deepcopy(self._bookings[booking_id])

    async def compare_and_set_booking(self, booking: Booking, expected: BookingStatus) -> bool:
        current = self._bookings.get(booking.id)
        if current is None or current.status != expected:
            return False
        self._bookings[booking.id] = copy.deepcopy(booking)
        return True

    async def confirm_booking(self, booking: Booking, now: datetime) -> bool:
        current = self._bookings.get(booking.id)
        if current is None or current.status != BookingStatus.PENDING:
            return False
        held = [
            lock
            for lock in self._locks.values()
            if lock.booking_id == booking.id and not lock.is_permanent and lock.is_live(now)
        ]
        if len(held) != len(booking.seat_numbers):
            return False
        for lock in held:
            lock.expires_at = None
        self._bookings[booking.id] = copy.deepcopy(booking)
        return True

    async def list_bookings_for_customer(
        self, customer_id: int, statuses: list[BookingStatus] | None = None
    ) -> list[Booking]:
        result = [
            copy.deepcopy(booking)
            for booking in self._bookings.values()
            if booking.customer_id == customer_id and (statuses is None or booking.status in statuses)
        ]
        return sorted(result, key=lambda b: b.created_at, reverse=True)

    async def list_bookings(
        self,
        status: BookingStatus,
        schedule_id: int | None = None,
        expires_before: datetime | None = None,
    ) -> list[Booking]:
        result = []
        for booking in self._bookings.values():
            if booking.status != status:
                continue
            if schedule_id is not None and booking.schedule_id != schedule_id:
                continue
            if expires_before is not None and (
                booking.expires_at is None or booking.expires_at > expires_before
            ):
                continue
            result.append(copy.deepcopy(booking))
        return sorted(result, key=lambda b: b.created_at)

    # ==================== PAYMENT SESSIONS ====================

    async def add_payment_session(self, session: PaymentSession) -> bool:
        if session.status == PaymentSessionStatus.ACTIVE and self._active_session(session.booking_id):
            return False
        self._sessions[session.payment_id] = copy.deepcopy(session)
        return True

    def _active_session(self, booking_id: UUID) -> PaymentSession | None:
        for session in self._sessions.values():
            if session.booking_id == booking_id and session.status == PaymentSessionStatus.ACTIVE:
                return session
        return None

    async def get_payment_session(self, payment_id: str) -> PaymentSession | None:
        return copy.deepcopy(self._sessions.get(payment_id))

    async def get_active_payment_session(self, booking_id: UUID) -> PaymentSession | None:
        return copy.deepcopy(self._active_session(booking_id))

    async def list_payment_sessions(
        self, status: PaymentSessionStatus, expires_before: datetime | None = None
    ) -> list[PaymentSession]:
        result = [
            copy.deepcopy(session)
            for session in self._sessions.values()
            if session.status == status
            and (expires_before is None or session.expires_at <= expires_before)
        ]
        return sorted(result, key=lambda s: s.created_at)

    async def compare_and_set_payment_session(
        self, session: PaymentSession, expected: PaymentSessionStatus
    ) -> bool:
        current = self._sessions.get(session.payment_id)
        if current is None or current.status != expected:
            return False
        self._sessions[session.payment_id] = copy.deepcopy(session)
        return True
