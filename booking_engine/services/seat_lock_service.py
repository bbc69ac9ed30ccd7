"""Seat lock service.

Grants and releases short-lived exclusive holds on (schedule, seat) pairs.
Acquisition is all-or-nothing: seats are taken under per-seat asyncio locks in
ascending order, and the repository write itself is atomic so that engines
sharing a database cannot both win the same seat.
"""

import asyncio
import logging
import weakref
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID

from booking_engine.config import Settings, settings
from booking_engine.core.clock import Clock, SystemClock
from booking_engine.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    NotLockedError,
    ValidationError,
)
from booking_engine.domain.entities import Schedule, ScheduleStatus, SeatLock
from booking_engine.repositories.base import Repository
from booking_engine.schemas.booking import SeatAvailability
from booking_engine.utils.validators import parse_seat_numbers

logger = logging.getLogger(__name__)


class SeatLockManager:
    """Service for seat hold operations."""

    def __init__(
        self,
        repository: Repository,
        clock: Clock | None = None,
        ttl: timedelta | None = None,
        config: Settings = settings,
    ) -> None:
        self.repository = repository
        self.clock = clock or SystemClock()
        self.ttl = ttl or timedelta(minutes=config.seat_lock_ttl_minutes)
        self._seat_mutexes: weakref.WeakValueDictionary[tuple[int, int], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _mutex(self, schedule_id: int, seat_number: int) -> asyncio.Lock:
        key = (schedule_id, seat_number)
        mutex = self._seat_mutexes.get(key)
        if mutex is None:
            mutex = asyncio.Lock()
            self._seat_mutexes[key] = mutex
        return mutex

    async def _hold_seats(self, stack: AsyncExitStack, schedule_id: int, seats: list[int]) -> None:
        """Enter the per-seat mutexes in ascending seat order."""
        for seat in sorted(seats):
            await stack.enter_async_context(self._mutex(schedule_id, seat))

    @staticmethod
    def normalize_seats(seat_numbers: Iterable[Any]) -> list[int]:
        """Parse, deduplicate and sort seat numbers.

        Raises:
            ValidationError: If the list is empty or holds a non-positive or non-integer seat
        """
        if seat_numbers is None or isinstance(seat_numbers, (str, bytes)):
            raise ValidationError("Seat numbers must be a list")
        try:
            seats = parse_seat_numbers(seat_numbers)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from None
        if not seats:
            raise ValidationError("At least one seat is required")
        return sorted(set(seats))

    async def get_schedule(self, schedule_id: int) -> Schedule:
        schedule = await self.repository.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", str(schedule_id))
        return schedule

    @staticmethod
    def check_seat_range(schedule: Schedule, seats: list[int]) -> None:
        out_of_range = [s for s in seats if s > schedule.total_seats]
        if out_of_range:
            raise ValidationError(
                f"Seats {out_of_range} do not exist on schedule {schedule.id} "
                f"(1-{schedule.total_seats})"
            )

    async def acquire(
        self,
        schedule_id: int,
        seat_numbers: Iterable[Any],
        owner_session_id: str,
        ttl: timedelta | None = None,
    ) -> list[SeatLock]:
        """Hold every requested seat for the owner, or none of them.

        Re-reserving seats the owner already holds extends them.

        Args:
            schedule_id: Schedule ID
            seat_numbers: Requested seats
            owner_session_id: Session that will own the holds
            ttl: Hold duration, defaults to the configured seat lock TTL

        Returns:
            list: The granted locks in seat order

        Raises:
            ValidationError: Malformed seat list or owner
            NotFoundError: Unknown schedule
            InvalidTransitionError: Schedule no longer open for booking
            ConflictError: Some seats are taken; `seats` lists exactly those
        """
        if not owner_session_id:
            raise ValidationError("Owner session ID is required")
        seats = self.normalize_seats(seat_numbers)
        schedule = await self.get_schedule(schedule_id)
        if schedule.status != ScheduleStatus.SCHEDULED:
            raise InvalidTransitionError(
                f"Schedule {schedule_id} is {ScheduleStatus(schedule.status).value} and not open for booking"
            )
        self.check_seat_range(schedule, seats)

        async with AsyncExitStack() as stack:
            await self._hold_seats(stack, schedule_id, seats)

            now = self.clock.now()
            expires_at = now + (ttl or self.ttl)
            existing = {
                lock.seat_number: lock
                for lock in await self.repository.get_seat_locks(schedule_id, seats)
                if lock.is_live(now) and lock.owner_session_id == owner_session_id
            }
            locks = [
                SeatLock(
                    schedule_id=schedule_id,
                    seat_number=seat,
                    owner_session_id=owner_session_id,
                    acquired_at=existing[seat].acquired_at if seat in existing else now,
                    expires_at=expires_at,
                )
                for seat in seats
            ]

            conflicts = await self.repository.put_seat_locks(locks, now)
            if conflicts:
                logger.info(f"Seats {conflicts} on schedule {schedule_id} already taken")
                raise ConflictError(
                    f"Seats {', '.join(str(s) for s in conflicts)} are already taken",
                    seats=conflicts,
                )

        logger.info(f"Locked seats {seats} on schedule {schedule_id} until {expires_at.isoformat()}")
        return locks

    async def release(
        self,
        schedule_id: int,
        seat_numbers: Iterable[Any],
        owner_session_id: str,
    ) -> int:
        """Release the owner's holds. Unowned, expired or bound seats are left alone."""
        seats = self.normalize_seats(seat_numbers)
        async with AsyncExitStack() as stack:
            await self._hold_seats(stack, schedule_id, seats)
            released = await self.repository.delete_seat_locks(schedule_id, seats, owner_session_id)
        if released:
            logger.info(f"Released {released} seat locks on schedule {schedule_id}")
        return released

    async def renew(self, owner_session_id: str, ttl: timedelta | None = None) -> list[SeatLock]:
        """Extend all of the owner's live holds not yet bound to a booking."""
        now = self.clock.now()
        return await self.repository.extend_seat_locks(
            owner_session_id, now, now + (ttl or self.ttl)
        )

    async def sweep(self, now: datetime | None = None) -> int:
        """Delete every lock whose expiry has passed."""
        removed = await self.repository.delete_expired_seat_locks(now or self.clock.now())
        if removed:
            logger.info(f"Swept {removed} expired seat locks")
        return removed

    async def list_locks(self, owner_session_id: str) -> list[SeatLock]:
        """Live holds of one session across all schedules."""
        now = self.clock.now()
        return [
            lock
            for lock in await self.repository.list_seat_locks_for_owner(owner_session_id)
            if lock.is_live(now) and not lock.is_permanent
        ]

    async def availability(self, schedule_id: int) -> SeatAvailability:
        """Booked, held and free seats of a schedule."""
        schedule = await self.get_schedule(schedule_id)
        now = self.clock.now()
        live = [lock for lock in await self.repository.get_seat_locks(schedule_id) if lock.is_live(now)]
        booked = sorted(lock.seat_number for lock in live if lock.is_permanent)
        locked = sorted(lock.seat_number for lock in live if not lock.is_permanent)
        return SeatAvailability(
            schedule_id=schedule_id,
            total_seats=schedule.total_seats,
            booked_seats=booked,
            locked_seats=locked,
            available_seats_count=max(schedule.total_seats - len(booked) - len(locked), 0),
        )

    # ==================== BOOKING HOOKS ====================

    async def bind(
        self,
        schedule_id: int,
        seat_numbers: list[int],
        owner_session_id: str,
        booking_id: UUID,
        expires_at: datetime,
    ) -> None:
        """Attach the owner's live holds to a pending booking and align their expiry.

        Raises:
            NotLockedError: Some seats are not held by the owner
        """
        async with AsyncExitStack() as stack:
            await self._hold_seats(stack, schedule_id, seat_numbers)
            now = self.clock.now()
            bound = await self.repository.bind_seat_locks(
                schedule_id, seat_numbers, owner_session_id, booking_id, now, expires_at
            )
            if not bound:
                locks = {
                    lock.seat_number: lock
                    for lock in await self.repository.get_seat_locks(schedule_id, seat_numbers)
                }
                missing = [
                    seat
                    for seat in seat_numbers
                    if seat not in locks
                    or locks[seat].owner_session_id != owner_session_id
                    or locks[seat].booking_id is not None
                    or locks[seat].is_permanent
                    or not locks[seat].is_live(now)
                ]
                raise NotLockedError(missing or list(seat_numbers))

    async def release_booking(self, booking_id: UUID) -> int:
        """Free every seat held or sold under a booking."""
        return await self.repository.delete_booking_seat_locks(booking_id)
