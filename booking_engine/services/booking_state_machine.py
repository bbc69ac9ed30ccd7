"""Booking lifecycle service.

Owns the booking record and every status change. Transitions read the current
booking, check the transition table, and commit with a compare-and-set on the
status they read; a lost race raises ConflictError and is never retried here.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from booking_engine.config import Settings, settings
from booking_engine.core.clock import Clock, SystemClock
from booking_engine.core.exceptions import (
    ConflictError,
    ExpiredError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from booking_engine.domain.booking_state import assert_booking_transition
from booking_engine.domain.cancellation_policy import (
    CancellationPolicyEngine,
    hours_before_departure,
)
from booking_engine.domain.entities import Booking, BookingStatus, ScheduleStatus
from booking_engine.domain.pricing import PricingEngine
from booking_engine.repositories.base import Repository
from booking_engine.schemas.booking import Passenger, RefundQuote
from booking_engine.services.seat_lock_service import SeatLockManager
from booking_engine.utils.booking_number import (
    generate_booking_reference,
    generate_guest_identifier,
)
from booking_engine.utils.validators import parse_seat_numbers

logger = logging.getLogger(__name__)

CUSTOMER_BOOKING_FILTERS = {
    "upcoming": [BookingStatus.PENDING, BookingStatus.CONFIRMED],
    "history": [BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.EXPIRED],
}


def _parse_passengers(passengers: Iterable[Any]) -> list[Passenger]:
    parsed = []
    errors = []
    for index, raw in enumerate(passengers):
        try:
            parsed.append(raw if isinstance(raw, Passenger) else Passenger.model_validate(raw))
        except PydanticValidationError as e:
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"])
                errors.append({"field": f"passengers[{index}].{location}", "message": error["msg"]})
    if errors:
        raise ValidationError("Invalid passenger details", errors=errors)
    return parsed


class BookingStateMachine:
    """Service for booking creation and status transitions."""

    def __init__(
        self,
        repository: Repository,
        seat_locks: SeatLockManager,
        clock: Clock | None = None,
        pricing: PricingEngine | None = None,
        cancellation_policy: CancellationPolicyEngine | None = None,
        config: Settings = settings,
        reference_factory: Callable[[datetime], str] = generate_booking_reference,
    ) -> None:
        self.repository = repository
        self.seat_locks = seat_locks
        self.clock = clock or SystemClock()
        self.pricing = pricing or PricingEngine()
        self.cancellation_policy = cancellation_policy or CancellationPolicyEngine(pricing=self.pricing)
        self.hold_duration = timedelta(minutes=config.hold_duration_minutes)
        self.reference_max_attempts = config.reference_max_attempts
        self.reference_factory = reference_factory

    # ==================== LOOKUPS ====================

    async def get(self, booking_id: UUID) -> Booking:
        booking = await self.repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking", str(booking_id))
        return booking

    async def get_by_reference(self, booking_reference: str) -> Booking:
        booking = await self.repository.get_booking_by_reference((booking_reference or "").strip().upper())
        if booking is None:
            raise NotFoundError("Booking", booking_reference)
        return booking

    async def list_for_customer(self, customer_id: int, status_filter: str | None = None) -> list[Booking]:
        """A customer's bookings, newest first.

        Args:
            customer_id: Registered customer
            status_filter: "upcoming" (pending, confirmed), "history" (completed,
                cancelled, expired) or None for everything
        """
        if status_filter is None:
            statuses = None
        elif status_filter in CUSTOMER_BOOKING_FILTERS:
            statuses = CUSTOMER_BOOKING_FILTERS[status_filter]
        else:
            raise ValidationError(
                f"Unknown booking filter '{status_filter}'",
                errors=[{"field": "status_filter", "message": "Must be one of: upcoming, history"}],
            )
        return await self.repository.list_bookings_for_customer(customer_id, statuses)

    async def _lost_race(self, booking: Booking, expected: BookingStatus) -> ConflictError:
        current = await self.repository.get_booking(booking.id)
        current_status = BookingStatus(current.status).value if current else "missing"
        logger.warning(
            f"Lost transition race on booking {booking.booking_reference}: "
            f"expected {BookingStatus(expected).value}, found {current_status}"
        )
        return ConflictError(
            f"Booking {booking.booking_reference} was modified concurrently (now {current_status})"
        )

    async def _commit(self, booking: Booking, expected: BookingStatus) -> Booking:
        """Write a transition, failing if the status changed since it was read."""
        if not await self.repository.compare_and_set_booking(booking, expected):
            raise await self._lost_race(booking, expected)
        return booking

    async def _lost_seats(self, booking: Booking, now: datetime) -> list[int]:
        """Seats of a pending booking whose bound lock is gone or has lapsed."""
        held = await self.repository.get_seat_locks(booking.schedule_id, booking.seat_numbers)
        held_seats = {
            lock.seat_number
            for lock in held
            if lock.booking_id == booking.id and not lock.is_permanent and lock.is_live(now)
        }
        return sorted(set(booking.seat_numbers) - held_seats)

    # ==================== CREATE ====================

    async def create(
        self,
        schedule_id: int,
        seat_numbers: Iterable[Any],
        passengers: Iterable[Any],
        owner_session_id: str,
        price_per_seat: Any,
        customer_id: int | None = None,
        guest_email: str | None = None,
        guest_phone: str | None = None,
        discount: Any = 0,
    ) -> Booking:
        """Create a pending booking on top of the caller's seat holds.

        Args:
            schedule_id: Schedule ID
            seat_numbers: Seats, each held by owner_session_id
            passengers: One passenger per seat (Passenger or mapping)
            owner_session_id: Session that holds the seats
            price_per_seat: Raw per-seat price, clamped by the pricing policy
            customer_id: Registered customer, if any
            guest_email: Guest contact email, used when there is no customer
            guest_phone: Guest contact phone, used when there is no customer
            discount: Discount rate in [0, 1)

        Returns:
            Booking: The pending booking, expiring after the hold duration

        Raises:
            ValidationError: Bad seats, passengers or owner
            NotFoundError: Unknown schedule
            InvalidTransitionError: Schedule is not open for booking
            NotLockedError: Some seats are not held by the caller
            ConflictError: No unique booking reference could be allocated
        """
        if not owner_session_id:
            raise ValidationError("Owner session ID is required")
        if seat_numbers is None or isinstance(seat_numbers, (str, bytes)):
            raise ValidationError("Seat numbers must be a list")
        try:
            seats = parse_seat_numbers(seat_numbers)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from None
        if not seats:
            raise ValidationError("At least one seat is required")
        duplicates = sorted({s for s in seats if seats.count(s) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate seats in booking: {duplicates}")
        seats = sorted(seats)

        parsed_passengers = _parse_passengers(passengers or [])
        if len(parsed_passengers) != len(seats):
            raise ValidationError(
                f"Expected {len(seats)} passengers for {len(seats)} seats, got {len(parsed_passengers)}"
            )

        schedule = await self.seat_locks.get_schedule(schedule_id)
        if schedule.status != ScheduleStatus.SCHEDULED:
            raise InvalidTransitionError(
                f"Schedule {schedule_id} is {ScheduleStatus(schedule.status).value} and not open for booking"
            )
        self.seat_locks.check_seat_range(schedule, seats)

        pricing = self.pricing.calculate(price_per_seat, len(seats), discount)

        now = self.clock.now()
        guest_identifier = None
        if customer_id is None:
            lead = parsed_passengers[0]
            guest_identifier = generate_guest_identifier(
                guest_email or lead.email, guest_phone or lead.phone, now
            )

        booking = Booking(
            booking_reference=self.reference_factory(now),
            schedule_id=schedule_id,
            seat_numbers=seats,
            passengers=[p.model_dump(mode="json") for p in parsed_passengers],
            pricing=pricing,
            owner_session_id=owner_session_id,
            customer_id=customer_id,
            guest_identifier=guest_identifier,
            created_at=now,
            updated_at=now,
            expires_at=now + self.hold_duration,
        )

        # Holds now follow the booking; they expire together
        await self.seat_locks.bind(schedule_id, seats, owner_session_id, booking.id, booking.expires_at)

        for attempt in range(1, self.reference_max_attempts + 1):
            if await self.repository.add_booking(booking):
                break
            logger.warning(
                f"Booking reference {booking.booking_reference} already used "
                f"(attempt {attempt}/{self.reference_max_attempts})"
            )
            booking.booking_reference = self.reference_factory(now)
        else:
            await self.seat_locks.release_booking(booking.id)
            raise ConflictError("Could not allocate a unique booking reference, please retry")

        logger.info(
            f"Booking {booking.booking_reference} created: schedule {schedule_id}, "
            f"seats {seats}, total {pricing.total_pay} {pricing.currency}"
        )
        return booking

    # ==================== TRANSITIONS ====================

    async def confirm(self, booking_id: UUID, payment_reference: str) -> Booking:
        """Confirm a paid booking and sell its seats.

        Raises:
            InvalidTransitionError: Booking is not pending
            ExpiredError: The hold has lapsed
            ConflictError: Seats are no longer held, or a concurrent transition won
        """
        booking = await self.get(booking_id)
        assert_booking_transition(booking.status, BookingStatus.CONFIRMED)

        now = self.clock.now()
        if booking.expires_at is None or now >= booking.expires_at:
            raise ExpiredError(f"Booking {booking.booking_reference} hold has expired")

        lost = await self._lost_seats(booking, now)
        if lost:
            raise ConflictError(f"Seats {lost} are no longer held for this booking", seats=lost)

        booking.status = BookingStatus.CONFIRMED
        booking.payment_reference = payment_reference
        booking.expires_at = None
        booking.confirmed_at = now
        booking.updated_at = now
        # Status change and seat sale are one write so a sweep cannot free the seats in between
        if not await self.repository.confirm_booking(booking, now):
            current = await self.repository.get_booking(booking.id)
            if current is None or current.status != BookingStatus.PENDING:
                raise await self._lost_race(booking, BookingStatus.PENDING)
            lost = await self._lost_seats(booking, now) or list(booking.seat_numbers)
            logger.warning(
                f"Booking {booking.booking_reference} lost seats {lost} while being confirmed"
            )
            raise ConflictError(f"Seats {lost} are no longer held for this booking", seats=lost)

        if not await self.repository.adjust_available_seats(booking.schedule_id, -len(booking.seat_numbers)):
            logger.error(
                f"Available seat counter of schedule {booking.schedule_id} could not absorb "
                f"{len(booking.seat_numbers)} seats for booking {booking.booking_reference}"
            )

        logger.info(f"Booking {booking.booking_reference} confirmed with payment {payment_reference}")
        return booking

    async def cancel(self, booking_id: UUID, reason: str | None = None) -> tuple[Booking, RefundQuote | None]:
        """Cancel a pending or confirmed booking.

        Pending bookings release their holds without a refund. Confirmed bookings
        are quoted against the schedule departure and return their seats.

        Raises:
            InvalidTransitionError: Booking is expired, cancelled or completed
            NotCancellableError: The trip has already departed
            ConflictError: A concurrent transition won
        """
        booking = await self.get(booking_id)
        assert_booking_transition(booking.status, BookingStatus.CANCELLED)
        previous = BookingStatus(booking.status)
        now = self.clock.now()

        quote = None
        if previous == BookingStatus.CONFIRMED:
            schedule = await self.seat_locks.get_schedule(booking.schedule_id)
            quote = self.cancellation_policy.quote(
                booking.total_pay, hours_before_departure(schedule.departure_at, now)
            )
            booking.refund_amount = quote.refund_amount

        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason
        booking.expires_at = None
        booking.cancelled_at = now
        booking.updated_at = now
        await self._commit(booking, previous)

        await self.seat_locks.release_booking(booking.id)
        if previous == BookingStatus.CONFIRMED:
            if not await self.repository.adjust_available_seats(booking.schedule_id, len(booking.seat_numbers)):
                logger.error(
                    f"Available seat counter of schedule {booking.schedule_id} could not take back "
                    f"{len(booking.seat_numbers)} seats for booking {booking.booking_reference}"
                )

        if quote:
            logger.info(
                f"Booking {booking.booking_reference} cancelled, refund {quote.refund_amount} {quote.currency}"
            )
        else:
            logger.info(f"Booking {booking.booking_reference} cancelled before payment")
        return booking, quote

    async def expire(self, booking_id: UUID) -> Booking:
        """Expire a pending booking whose hold has lapsed. Expiring twice is a no-op."""
        booking = await self.get(booking_id)
        if booking.status == BookingStatus.EXPIRED:
            return booking
        assert_booking_transition(booking.status, BookingStatus.EXPIRED)

        now = self.clock.now()
        if booking.expires_at is not None and now < booking.expires_at:
            raise InvalidTransitionError(
                f"Booking {booking.booking_reference} hold runs until {booking.expires_at.isoformat()}"
            )

        booking.status = BookingStatus.EXPIRED
        booking.expires_at = None
        booking.updated_at = now
        await self._commit(booking, BookingStatus.PENDING)

        await self.seat_locks.release_booking(booking.id)
        logger.info(f"Booking {booking.booking_reference} expired")
        return booking

    async def complete(self, booking_id: UUID) -> Booking:
        """Mark a confirmed booking completed once its trip has arrived."""
        booking = await self.get(booking_id)
        assert_booking_transition(booking.status, BookingStatus.COMPLETED)

        schedule = await self.seat_locks.get_schedule(booking.schedule_id)
        now = self.clock.now()
        if now < schedule.arrival_at:
            raise InvalidTransitionError(
                f"Schedule {schedule.id} arrives at {schedule.arrival_at.isoformat()}"
            )

        booking.status = BookingStatus.COMPLETED
        booking.completed_at = now
        booking.updated_at = now
        await self._commit(booking, BookingStatus.CONFIRMED)

        logger.info(f"Booking {booking.booking_reference} completed")
        return booking

    async def quote_refund(self, booking_id: UUID) -> RefundQuote:
        """Quote the refund a confirmed booking would get if cancelled now."""
        booking = await self.get(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidTransitionError(
                f"Only confirmed bookings have a refund quote, booking is {BookingStatus(booking.status).value}"
            )
        schedule = await self.seat_locks.get_schedule(booking.schedule_id)
        return self.cancellation_policy.quote(
            booking.total_pay, hours_before_departure(schedule.departure_at, self.clock.now())
        )
