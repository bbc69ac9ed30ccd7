"""SQLAlchemy-backed repository.

Each method runs in its own transaction. Status changes are conditional
UPDATEs checked through rowcount; uniqueness of seat locks, booking references
and active payment sessions is enforced by the database.
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.domain.entities import (
    Booking,
    BookingStatus,
    PaymentSession,
    PaymentSessionStatus,
    Schedule,
    ScheduleStatus,
    SeatLock,
)
from booking_engine.models import (
    BookingRecord,
    PaymentSessionRecord,
    ScheduleRecord,
    SeatLockRecord,
)
from booking_engine.repositories.base import Repository
from booking_engine.schemas.booking import PricingBreakdown

logger = logging.getLogger(__name__)


def _utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without time zones."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _schedule_from_record(record: ScheduleRecord) -> Schedule:
    return Schedule(
        id=record.id,
        departure_at=_utc(record.departure_at),
        arrival_at=_utc(record.arrival_at),
        total_seats=record.total_seats,
        available_seats=record.available_seats,
        status=ScheduleStatus(record.status),
        departed_at=_utc(record.departed_at),
        completed_at=_utc(record.completed_at),
    )


def _lock_from_record(record: SeatLockRecord) -> SeatLock:
    return SeatLock(
        schedule_id=record.schedule_id,
        seat_number=record.seat_number,
        owner_session_id=record.owner_session_id,
        acquired_at=_utc(record.acquired_at),
        expires_at=_utc(record.expires_at),
        booking_id=record.booking_id,
    )


def _booking_from_record(record: BookingRecord) -> Booking:
    return Booking(
        id=record.id,
        booking_reference=record.booking_reference,
        schedule_id=record.schedule_id,
        seat_numbers=list(record.seat_numbers),
        passengers=list(record.passengers),
        pricing=PricingBreakdown(
            price_per_seat=record.price_per_seat,
            num_seats=record.num_seats,
            base_fare=record.base_fare,
            discount_amount=record.discount_amount,
            bus_fare=record.bus_fare,
            convenience_fee=record.convenience_fee,
            bank_charge=record.bank_charge,
            total_pay=record.total_pay,
            currency=record.currency,
        ),
        owner_session_id=record.owner_session_id,
        status=BookingStatus(record.status),
        customer_id=record.customer_id,
        guest_identifier=record.guest_identifier,
        payment_reference=record.payment_reference,
        cancellation_reason=record.cancellation_reason,
        refund_amount=record.refund_amount,
        created_at=_utc(record.created_at),
        updated_at=_utc(record.updated_at),
        expires_at=_utc(record.expires_at),
        confirmed_at=_utc(record.confirmed_at),
        cancelled_at=_utc(record.cancelled_at),
        completed_at=_utc(record.completed_at),
    )


def _booking_values(booking: Booking) -> dict:
    """Column values for a booking, flattening the pricing breakdown."""
    return {
        "id": booking.id,
        "booking_reference": booking.booking_reference,
        "schedule_id": booking.schedule_id,
        "owner_session_id": booking.owner_session_id,
        "customer_id": booking.customer_id,
        "guest_identifier": booking.guest_identifier,
        "seat_numbers": list(booking.seat_numbers),
        "passengers": list(booking.passengers),
        **booking.pricing.model_dump(),
        "status": BookingStatus(booking.status).value,
        "expires_at": booking.expires_at,
        "payment_reference": booking.payment_reference,
        "cancellation_reason": booking.cancellation_reason,
        "refund_amount": booking.refund_amount,
        "created_at": booking.created_at,
        "updated_at": booking.updated_at,
        "confirmed_at": booking.confirmed_at,
        "cancelled_at": booking.cancelled_at,
        "completed_at": booking.completed_at,
    }


def _session_from_record(record: PaymentSessionRecord) -> PaymentSession:
    return PaymentSession(
        payment_id=record.payment_id,
        booking_id=record.booking_id,
        booking_reference=record.booking_reference,
        amount=record.amount,
        currency=record.currency,
        status=PaymentSessionStatus(record.status),
        payment_reference=record.payment_reference,
        failure_reason=record.failure_reason,
        created_at=_utc(record.created_at),
        expires_at=_utc(record.expires_at),
        completed_at=_utc(record.completed_at),
    )


def _session_values(session: PaymentSession) -> dict:
    return {
        "payment_id": session.payment_id,
        "booking_id": session.booking_id,
        "booking_reference": session.booking_reference,
        "amount": session.amount,
        "currency": session.currency,
        "status": PaymentSessionStatus(session.status).value,
        "payment_reference": session.payment_reference,
        "failure_reason": session.failure_reason,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
        "completed_at": session.completed_at,
    }


def _blocks(lock: SeatLock, owner_session_id: str, now: datetime) -> bool:
    """Whether an existing lock prevents `owner_session_id` from taking the seat."""
    if not lock.is_live(now):
        return False
    return (
        lock.owner_session_id != owner_session_id
        or lock.is_permanent
        or lock.booking_id is not None
    )


class SqlAlchemyRepository(Repository):
    """Repository on an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ==================== SCHEDULES ====================

    async def add_schedule(self, schedule: Schedule) -> None:
        async with self._session_factory() as session:
            session.add(
                ScheduleRecord(
                    id=schedule.id,
                    departure_at=schedule.departure_at,
                    arrival_at=schedule.arrival_at,
                    total_seats=schedule.total_seats,
                    available_seats=schedule.available_seats,
                    status=ScheduleStatus(schedule.status).value,
                    departed_at=schedule.departed_at,
                    completed_at=schedule.completed_at,
                )
            )
            await session.commit()

    async def get_schedule(self, schedule_id: int) -> Schedule | None:
        async with self._session_factory() as session:
            record = await session.get(ScheduleRecord, schedule_id)
            return _schedule_from_record(record) if record else None

    async def list_schedules(self, status: ScheduleStatus) -> list[Schedule]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScheduleRecord)
                .where(ScheduleRecord.status == ScheduleStatus(status).value)
                .order_by(ScheduleRecord.id)
            )
            return [_schedule_from_record(r) for r in result.scalars().all()]

    async def set_schedule_status(
        self,
        schedule_id: int,
        expected: ScheduleStatus,
        status: ScheduleStatus,
        at: datetime,
    ) -> bool:
        values: dict = {"status": ScheduleStatus(status).value}
        if status == ScheduleStatus.IN_PROGRESS:
            values["departed_at"] = at
        elif status == ScheduleStatus.COMPLETED:
            values["completed_at"] = at

        async with self._session_factory() as session:
            result = await session.execute(
                update(ScheduleRecord)
                .where(
                    ScheduleRecord.id == schedule_id,
                    ScheduleRecord.status == ScheduleStatus(expected).value,
                )
                .values(**values)
            )
            await session.commit()
            return result.rowcount == 1

    async def adjust_available_seats(self, schedule_id: int, delta: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(ScheduleRecord)
                .where(
                    ScheduleRecord.id == schedule_id,
                    ScheduleRecord.available_seats + delta >= 0,
                    ScheduleRecord.available_seats + delta <= ScheduleRecord.total_seats,
                )
                .values(available_seats=ScheduleRecord.available_seats + delta)
            )
            await session.commit()
            return result.rowcount == 1

    # ==================== SEAT LOCKS ====================

    async def get_seat_locks(
        self, schedule_id: int, seat_numbers: list[int] | None = None
    ) -> list[SeatLock]:
        query = select(SeatLockRecord).where(SeatLockRecord.schedule_id == schedule_id)
        if seat_numbers is not None:
            query = query.where(SeatLockRecord.seat_number.in_(seat_numbers))
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(SeatLockRecord.seat_number))
            return [_lock_from_record(r) for r in result.scalars().all()]

    async def list_seat_locks_for_owner(self, owner_session_id: str) -> list[SeatLock]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SeatLockRecord)
                .where(SeatLockRecord.owner_session_id == owner_session_id)
                .order_by(SeatLockRecord.schedule_id, SeatLockRecord.seat_number)
            )
            return [_lock_from_record(r) for r in result.scalars().all()]

    async def put_seat_locks(self, locks: list[SeatLock], now: datetime) -> list[int]:
        if not locks:
            return []
        schedule_id = locks[0].schedule_id
        owner = locks[0].owner_session_id
        seats = [lock.seat_number for lock in locks]

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SeatLockRecord)
                    .where(
                        SeatLockRecord.schedule_id == schedule_id,
                        SeatLockRecord.seat_number.in_(seats),
                    )
                    .with_for_update()
                )
                rows = {r.seat_number: r for r in result.scalars().all()}

                conflicts = sorted(
                    seat for seat, row in rows.items() if _blocks(_lock_from_record(row), owner, now)
                )
                if conflicts:
                    await session.rollback()
                    return conflicts

                for lock in locks:
                    row = rows.get(lock.seat_number)
                    if row is None:
                        session.add(
                            SeatLockRecord(
                                schedule_id=lock.schedule_id,
                                seat_number=lock.seat_number,
                                owner_session_id=lock.owner_session_id,
                                acquired_at=lock.acquired_at,
                                expires_at=lock.expires_at,
                                booking_id=lock.booking_id,
                            )
                        )
                    else:
                        row.owner_session_id = lock.owner_session_id
                        row.acquired_at = lock.acquired_at
                        row.expires_at = lock.expires_at
                        row.booking_id = lock.booking_id
                await session.commit()
        except IntegrityError:
            # Another writer inserted one of the seats between our read and write
            logger.warning(f"Concurrent seat lock insert on schedule {schedule_id}, seats {seats}")
            current = await self.get_seat_locks(schedule_id, seats)
            taken = sorted(lock.seat_number for lock in current if _blocks(lock, owner, now))
            return taken or sorted(seats)
        return []

    async def delete_seat_locks(
        self, schedule_id: int, seat_numbers: list[int], owner_session_id: str
    ) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SeatLockRecord).where(
                    SeatLockRecord.schedule_id == schedule_id,
                    SeatLockRecord.seat_number.in_(seat_numbers),
                    SeatLockRecord.owner_session_id == owner_session_id,
                    SeatLockRecord.booking_id.is_(None),
                    SeatLockRecord.expires_at.is_not(None),
                )
            )
            await session.commit()
            return result.rowcount

    async def extend_seat_locks(
        self, owner_session_id: str, now: datetime, expires_at: datetime
    ) -> list[SeatLock]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SeatLockRecord)
                .where(
                    SeatLockRecord.owner_session_id == owner_session_id,
                    SeatLockRecord.booking_id.is_(None),
                    SeatLockRecord.expires_at.is_not(None),
                    SeatLockRecord.expires_at > now,
                )
                .order_by(SeatLockRecord.schedule_id, SeatLockRecord.seat_number)
                .with_for_update()
            )
            rows = result.scalars().all()
            for row in rows:
                row.expires_at = expires_at
            await session.commit()
            return [_lock_from_record(r) for r in rows]

    async def bind_seat_locks(
        self,
        schedule_id: int,
        seat_numbers: list[int],
        owner_session_id: str,
        booking_id: UUID,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(SeatLockRecord)
                .where(
                    SeatLockRecord.schedule_id == schedule_id,
                    SeatLockRecord.seat_number.in_(seat_numbers),
                    SeatLockRecord.owner_session_id == owner_session_id,
                    SeatLockRecord.booking_id.is_(None),
                    SeatLockRecord.expires_at.is_not(None),
                    SeatLockRecord.expires_at > now,
                )
                .values(booking_id=booking_id, expires_at=expires_at)
            )
            if result.rowcount != len(seat_numbers):
                await session.rollback()
                return False
            await session.commit()
            return True

    async def delete_booking_seat_locks(self, booking_id: UUID) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SeatLockRecord).where(SeatLockRecord.booking_id == booking_id)
            )
            await session.commit()
            return result.rowcount

    async def delete_expired_seat_locks(self, now: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SeatLockRecord).where(
                    SeatLockRecord.expires_at.is_not(None),
                    SeatLockRecord.expires_at <= now,
                )
            )
            await session.commit()
            return result.rowcount

    # ==================== BOOKINGS ====================

    async def add_booking(self, booking: Booking) -> bool:
        async with self._session_factory() as session:
            session.add(BookingRecord(**_booking_values(booking)))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(f"Booking reference collision: {booking.booking_reference}")
                return False
            return True

    async def get_booking(self, booking_id: UUID) -> Booking | None:
        async with self._session_factory() as session:
            record = await session.get(BookingRecord, booking_id)
            return _booking_from_record(record) if record else None

    async def get_booking_by_reference(self, booking_reference: str) -> Booking | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BookingRecord).where(BookingRecord.booking_reference == booking_reference)
            )
            record = result.scalar_one_or_none()
            return _booking_from_record(record) if record else None

    async def compare_and_set_booking(self, booking: Booking, expected: BookingStatus) -> bool:
        values = _booking_values(booking)
        values.pop("id")
        async with self._session_factory() as session:
            result = await session.execute(
                update(BookingRecord)
                .where(
                    BookingRecord.id == booking.id,
                    BookingRecord.status == BookingStatus(expected).value,
                )
                .values(**values)
            )
            await session.commit()
            return result.rowcount == 1

    async def confirm_booking(self, booking: Booking, now: datetime) -> bool:
        values = _booking_values(booking)
        values.pop("id")
        async with self._session_factory() as session:
            result = await session.execute(
                update(BookingRecord)
                .where(
                    BookingRecord.id == booking.id,
                    BookingRecord.status == BookingStatus.PENDING.value,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                await session.rollback()
                return False

            # A concurrent sweep either deleted the lock already or waits on this row
            result = await session.execute(
                update(SeatLockRecord)
                .where(
                    SeatLockRecord.booking_id == booking.id,
                    SeatLockRecord.expires_at.is_not(None),
                    SeatLockRecord.expires_at > now,
                )
                .values(expires_at=None)
            )
            if result.rowcount != len(booking.seat_numbers):
                await session.rollback()
                return False
            await session.commit()
            return True

    async def list_bookings_for_customer(
        self, customer_id: int, statuses: list[BookingStatus] | None = None
    ) -> list[Booking]:
        query = select(BookingRecord).where(BookingRecord.customer_id == customer_id)
        if statuses is not None:
            query = query.where(BookingRecord.status.in_([BookingStatus(s).value for s in statuses]))
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(BookingRecord.created_at.desc()))
            return [_booking_from_record(r) for r in result.scalars().all()]

    async def list_bookings(
        self,
        status: BookingStatus,
        schedule_id: int | None = None,
        expires_before: datetime | None = None,
    ) -> list[Booking]:
        query = select(BookingRecord).where(BookingRecord.status == BookingStatus(status).value)
        if schedule_id is not None:
            query = query.where(BookingRecord.schedule_id == schedule_id)
        if expires_before is not None:
            query = query.where(
                BookingRecord.expires_at.is_not(None),
                BookingRecord.expires_at <= expires_before,
            )
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(BookingRecord.created_at))
            return [_booking_from_record(r) for r in result.scalars().all()]

    # ==================== PAYMENT SESSIONS ====================

    async def add_payment_session(self, session: PaymentSession) -> bool:
        async with self._session_factory() as db:
            db.add(PaymentSessionRecord(**_session_values(session)))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
            return True

    async def get_payment_session(self, payment_id: str) -> PaymentSession | None:
        async with self._session_factory() as db:
            record = await db.get(PaymentSessionRecord, payment_id)
            return _session_from_record(record) if record else None

    async def get_active_payment_session(self, booking_id: UUID) -> PaymentSession | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PaymentSessionRecord).where(
                    PaymentSessionRecord.booking_id == booking_id,
                    PaymentSessionRecord.status == PaymentSessionStatus.ACTIVE.value,
                )
            )
            record = result.scalar_one_or_none()
            return _session_from_record(record) if record else None

    async def list_payment_sessions(
        self, status: PaymentSessionStatus, expires_before: datetime | None = None
    ) -> list[PaymentSession]:
        query = select(PaymentSessionRecord).where(
            PaymentSessionRecord.status == PaymentSessionStatus(status).value
        )
        if expires_before is not None:
            query = query.where(PaymentSessionRecord.expires_at <= expires_before)
        async with self._session_factory() as db:
            result = await db.execute(query.order_by(PaymentSessionRecord.created_at))
            return [_session_from_record(r) for r in result.scalars().all()]

    async def compare_and_set_payment_session(
        self, session: PaymentSession, expected: PaymentSessionStatus
    ) -> bool:
        values = _session_values(session)
        values.pop("payment_id")
        async with self._session_factory() as db:
            result = await db.execute(
                update(PaymentSessionRecord)
                .where(
                    PaymentSessionRecord.payment_id == session.payment_id,
                    PaymentSessionRecord.status == PaymentSessionStatus(expected).value,
                )
                .values(**values)
            )
            await db.commit()
            return result.rowcount == 1
