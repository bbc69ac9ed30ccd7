"""Background sweeper for timed-out holds and finished trips.

Each tick:
1. Deletes expired seat locks
2. Expires pending bookings whose hold has lapsed
3. Closes active payment sessions past their expiry
4. Moves departed schedules to in_progress and arrived ones to completed
5. Completes the confirmed bookings of completed schedules

Every step is a compare-and-set, so a booking confirmed while the tick runs
is never forced to expire, and running a tick twice changes nothing more.
"""

import asyncio
import logging
from dataclasses import dataclass

from booking_engine.config import Settings, settings
from booking_engine.core.clock import Clock, SystemClock
from booking_engine.core.exceptions import AppException
from booking_engine.domain.entities import BookingStatus, PaymentSessionStatus, ScheduleStatus
from booking_engine.repositories.base import Repository
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.seat_lock_service import SeatLockManager

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """What one tick changed."""

    locks_removed: int = 0
    bookings_expired: int = 0
    sessions_expired: int = 0
    schedules_departed: int = 0
    schedules_completed: int = 0
    bookings_completed: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "locks_removed": self.locks_removed,
            "bookings_expired": self.bookings_expired,
            "sessions_expired": self.sessions_expired,
            "schedules_departed": self.schedules_departed,
            "schedules_completed": self.schedules_completed,
            "bookings_completed": self.bookings_completed,
            "errors": self.errors,
        }


class ExpirationSweeper:
    """Periodic sweeper driven by an injected clock."""

    def __init__(
        self,
        repository: Repository,
        seat_locks: SeatLockManager,
        bookings: BookingStateMachine,
        clock: Clock | None = None,
        interval_seconds: float | None = None,
        config: Settings = settings,
    ) -> None:
        self.repository = repository
        self.seat_locks = seat_locks
        self.bookings = bookings
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds or config.sweep_interval_seconds
        self.running = False
        self.task: asyncio.Task | None = None

    async def tick(self) -> SweepResult:
        """Run one sweep pass."""
        result = SweepResult()
        now = self.clock.now()

        result.locks_removed = await self.seat_locks.sweep(now)

        for booking in await self.repository.list_bookings(BookingStatus.PENDING, expires_before=now):
            try:
                await self.bookings.expire(booking.id)
                result.bookings_expired += 1
            except AppException as e:
                result.errors += 1
                logger.error(f"Could not expire booking {booking.booking_reference}: {e.detail}")

        for session in await self.repository.list_payment_sessions(
            PaymentSessionStatus.ACTIVE, expires_before=now
        ):
            session.status = PaymentSessionStatus.EXPIRED
            session.failure_reason = "Session expired"
            if await self.repository.compare_and_set_payment_session(session, PaymentSessionStatus.ACTIVE):
                result.sessions_expired += 1
            else:
                logger.warning(f"Payment session {session.payment_id} was closed concurrently")

        for schedule in await self.repository.list_schedules(ScheduleStatus.SCHEDULED):
            if schedule.departure_at <= now and await self.repository.set_schedule_status(
                schedule.id, ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS, now
            ):
                result.schedules_departed += 1
                logger.info(f"Schedule {schedule.id} departed")

        for schedule in await self.repository.list_schedules(ScheduleStatus.IN_PROGRESS):
            if schedule.arrival_at > now:
                continue
            if await self.repository.set_schedule_status(
                schedule.id, ScheduleStatus.IN_PROGRESS, ScheduleStatus.COMPLETED, now
            ):
                result.schedules_completed += 1
                logger.info(f"Schedule {schedule.id} completed")

        # Also picks up bookings left behind by an earlier tick that failed midway
        for schedule in await self.repository.list_schedules(ScheduleStatus.COMPLETED):
            for booking in await self.repository.list_bookings(
                BookingStatus.CONFIRMED, schedule_id=schedule.id
            ):
                try:
                    await self.bookings.complete(booking.id)
                    result.bookings_completed += 1
                except AppException as e:
                    result.errors += 1
                    logger.error(f"Could not complete booking {booking.booking_reference}: {e.detail}")

        if any(result.as_dict().values()):
            logger.info(f"Sweep finished: {result.as_dict()}")
        return result

    async def start(self) -> None:
        """Start the background loop"""
        if self.running:
            logger.warning("Expiration sweeper already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info(f"Expiration sweeper started (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background loop"""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Expiration sweeper stopped")

    async def _run(self) -> None:
        while self.running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiration sweeper: {e}")
            await asyncio.sleep(self.interval_seconds)
