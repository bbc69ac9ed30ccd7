import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from booking_engine.core.exceptions import (
    ConflictError,
    ExpiredError,
    InvalidTransitionError,
    NotCancellableError,
    NotFoundError,
    NotLockedError,
    ValidationError,
)
from booking_engine.domain.entities import BookingStatus, Schedule, ScheduleStatus
from booking_engine.repositories.memory import InMemoryRepository
from booking_engine.services.booking_service import build_booking_service
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.utils.booking_number import is_valid_booking_reference


class YieldingRepository(InMemoryRepository):
    """Yields to the event loop after each booking read so transitions interleave"""

    async def get_booking(self, booking_id):
        booking = await super().get_booking(booking_id)
        await asyncio.sleep(0)
        return booking


@pytest.mark.asyncio
async def test_create_pending_booking(book, clock):
    created_at = clock.now()
    booking = await book(seats=(2, 1))

    assert booking.status == BookingStatus.PENDING
    assert timedelta(minutes=14) <= booking.expires_at - created_at <= timedelta(minutes=15)
    assert is_valid_booking_reference(booking.booking_reference)
    assert booking.seat_numbers == [1, 2]
    assert len(booking.passengers) == 2
    assert booking.pricing.num_seats == 2
    assert booking.pricing.total_pay == 321_000
    assert booking.guest_identifier.startswith("GUEST-")
    assert booking.guest_identifier.endswith("-passenge-5678")
    assert booking.customer_id is None


@pytest.mark.asyncio
async def test_create_for_customer_has_no_guest_identifier(book):
    booking = await book(seats=(1,), customer_id=42)

    assert booking.customer_id == 42
    assert booking.guest_identifier is None


@pytest.mark.asyncio
async def test_locks_follow_booking_expiry(book, repository, schedule):
    booking = await book(seats=(1, 2))

    locks = await repository.get_seat_locks(schedule.id, [1, 2])
    assert all(lock.booking_id == booking.id for lock in locks)
    assert all(lock.expires_at == booking.expires_at for lock in locks)


@pytest.mark.asyncio
async def test_create_requires_own_locks(service, schedule, passengers):
    await service.reserve_seats(schedule.id, [1], "session-b")

    with pytest.raises(NotLockedError) as exc_info:
        await service.create_booking(schedule.id, [1, 2], passengers(2), "session-a", 150_000)

    assert exc_info.value.seats == [1, 2]


@pytest.mark.asyncio
async def test_create_with_expired_locks(service, schedule, passengers, clock):
    await service.reserve_seats(schedule.id, [1, 2], "session-a")
    clock.advance(minutes=15)

    with pytest.raises(NotLockedError):
        await service.create_booking(schedule.id, [1, 2], passengers(2), "session-a", 150_000)


@pytest.mark.asyncio
async def test_create_validates_input(service, schedule, passengers):
    await service.reserve_seats(schedule.id, [1, 2], "session-a")

    with pytest.raises(ValidationError):
        await service.create_booking(schedule.id, [1, 1], passengers(2), "session-a", 150_000)
    with pytest.raises(ValidationError):
        await service.create_booking(schedule.id, [1, 2], passengers(1), "session-a", 150_000)
    with pytest.raises(ValidationError):
        await service.create_booking(schedule.id, [], [], "session-a", 150_000)
    with pytest.raises(ValidationError) as exc_info:
        await service.create_booking(
            schedule.id, [1, 2], passengers(2, full_name="  "), "session-a", 150_000
        )
    assert exc_info.value.errors[0]["field"].startswith("passengers[0]")


@pytest.mark.asyncio
async def test_create_on_unknown_or_departed_schedule(service, schedule, passengers, repository, clock):
    with pytest.raises(NotFoundError):
        await service.create_booking(999, [1], passengers(1), "session-a", 150_000)

    await service.reserve_seats(schedule.id, [1], "session-a")
    await repository.set_schedule_status(
        schedule.id, ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS, clock.now()
    )
    with pytest.raises(InvalidTransitionError):
        await service.create_booking(schedule.id, [1], passengers(1), "session-a", 150_000)


@pytest.mark.asyncio
async def test_reference_collision_is_retried(repository, clock, test_settings, schedule, passengers):
    references = iter(["BKG-AAAA-0001", "BKG-AAAA-0001", "BKG-AAAA-0002"])
    service = build_booking_service(config=test_settings, repository=repository, clock=clock)
    service.bookings.reference_factory = lambda now: next(references)

    await service.reserve_seats(schedule.id, [1, 2], "session-a")
    first = await service.create_booking(schedule.id, [1], passengers(1), "session-a", 150_000)
    second = await service.create_booking(schedule.id, [2], passengers(1), "session-a", 150_000)

    assert first.booking_reference == "BKG-AAAA-0001"
    assert second.booking_reference == "BKG-AAAA-0002"


@pytest.mark.asyncio
async def test_reference_retries_exhausted(repository, clock, test_settings, schedule, passengers):
    service = build_booking_service(config=test_settings, repository=repository, clock=clock)
    service.bookings.reference_factory = lambda now: "BKG-SAME-0001"

    await service.reserve_seats(schedule.id, [1, 2], "session-a")
    await service.create_booking(schedule.id, [1], passengers(1), "session-a", 150_000)

    with pytest.raises(ConflictError):
        await service.create_booking(schedule.id, [2], passengers(1), "session-a", 150_000)

    # The seat is free again
    await service.reserve_seats(schedule.id, [2], "session-b")


@pytest.mark.asyncio
async def test_confirm(book, service, repository, schedule, clock):
    booking = await book(seats=(1, 2))
    clock.advance(minutes=5)

    confirmed = await service.confirm_booking(booking.id, "PAYR-TEST-000001")

    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_reference == "PAYR-TEST-000001"
    assert confirmed.expires_at is None
    assert confirmed.confirmed_at == clock.now()
    locks = await repository.get_seat_locks(schedule.id)
    assert all(lock.is_permanent for lock in locks)
    assert (await repository.get_schedule(schedule.id)).available_seats == 38

    # Sold seats survive any amount of time
    clock.advance(days=1)
    await service.seat_locks.sweep()
    assert len(await repository.get_seat_locks(schedule.id)) == 2


@pytest.mark.asyncio
async def test_confirm_after_hold_lapsed(book, service, clock):
    booking = await book()
    clock.advance(minutes=15)

    with pytest.raises(ExpiredError) as exc_info:
        await service.confirm_booking(booking.id, "PAYR-TEST-000001")
    assert exc_info.value.status_code == 410


@pytest.mark.asyncio
async def test_confirm_decrements_counter_once(book, service, repository, schedule):
    booking = await book(seats=(1, 2, 3))
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")

    with pytest.raises(InvalidTransitionError):
        await service.confirm_booking(booking.id, "PAYR-TEST-000002")
    assert (await repository.get_schedule(schedule.id)).available_seats == 37


@pytest.mark.asyncio
async def test_cancel_pending_releases_seats(book, service, schedule):
    booking = await book(seats=(1, 2))

    cancelled, quote = await service.cancel_booking(booking.id, "Changed plans")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancellation_reason == "Changed plans"
    assert cancelled.expires_at is None
    assert quote is None
    await service.reserve_seats(schedule.id, [1, 2], "session-b")


@pytest.mark.asyncio
async def test_cancel_confirmed_full_refund(book, service, repository, schedule):
    booking = await book(seats=(1, 2))
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")

    cancelled, quote = await service.cancel_booking(booking.id)

    assert quote.refund_rate == 1.0
    assert quote.refund_amount == booking.total_pay
    assert cancelled.refund_amount == booking.total_pay
    assert (await repository.get_schedule(schedule.id)).available_seats == 40
    assert await repository.get_seat_locks(schedule.id) == []


@pytest.mark.asyncio
async def test_cancel_confirmed_partial_refund(book, service, clock):
    booking = await book(seats=(1,))
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")
    clock.advance(hours=33)  # 15 hours before departure

    quote = await service.quote_refund(booking.id)
    cancelled, cancel_quote = await service.cancel_booking(booking.id)

    assert quote == cancel_quote
    assert cancel_quote.refund_rate == 0.5
    assert cancelled.refund_amount == cancel_quote.refund_amount


@pytest.mark.asyncio
async def test_cancel_after_departure(book, service, clock):
    booking = await book(seats=(1,))
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")
    clock.advance(hours=49)

    with pytest.raises(NotCancellableError):
        await service.cancel_booking(booking.id)
    assert (await service.get_booking(booking.id)).status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_quote_refund_requires_confirmed(book, service):
    booking = await book()

    with pytest.raises(InvalidTransitionError):
        await service.quote_refund(booking.id)


async def _expired(service, booking, clock):
    clock.advance(minutes=15)
    return await service.bookings.expire(booking.id)


async def _cancelled(service, booking, clock):
    cancelled, _ = await service.cancel_booking(booking.id)
    return cancelled


async def _completed(service, booking, clock):
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")
    clock.advance(hours=54)
    return await service.bookings.complete(booking.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("finish", [_expired, _cancelled, _completed])
async def test_terminal_bookings_reject_transitions(book, service, clock, finish):
    booking = await finish(service, await book(), clock)

    with pytest.raises(InvalidTransitionError):
        await service.confirm_booking(booking.id, "PAYR-TEST-000002")
    with pytest.raises(InvalidTransitionError):
        await service.cancel_booking(booking.id)


@pytest.mark.asyncio
async def test_expire(book, service, schedule, clock):
    booking = await book(seats=(1, 2))

    with pytest.raises(InvalidTransitionError):
        await service.bookings.expire(booking.id)

    clock.advance(minutes=15)
    expired = await service.bookings.expire(booking.id)
    assert expired.status == BookingStatus.EXPIRED
    assert expired.expires_at is None

    again = await service.bookings.expire(booking.id)
    assert again.status == BookingStatus.EXPIRED
    assert again.updated_at == expired.updated_at

    await service.reserve_seats(schedule.id, [1, 2], "session-b")


@pytest.mark.asyncio
async def test_expire_confirmed_booking_rejected(book, service, clock):
    booking = await book()
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")
    clock.advance(minutes=30)

    with pytest.raises(InvalidTransitionError):
        await service.bookings.expire(booking.id)


@pytest.mark.asyncio
async def test_complete(book, service, clock):
    booking = await book()
    await service.confirm_booking(booking.id, "PAYR-TEST-000001")

    with pytest.raises(InvalidTransitionError):
        await service.bookings.complete(booking.id)

    clock.advance(hours=54)
    completed = await service.bookings.complete(booking.id)
    assert completed.status == BookingStatus.COMPLETED
    assert completed.completed_at == clock.now()


@pytest.mark.asyncio
async def test_racing_transitions_resolved_by_compare_and_set(clock, test_settings, passengers):
    repository = YieldingRepository()
    await repository.add_schedule(
        Schedule(
            id=1,
            departure_at=clock.now() + timedelta(hours=48),
            arrival_at=clock.now() + timedelta(hours=54),
            total_seats=40,
            available_seats=40,
        )
    )
    service = build_booking_service(config=test_settings, repository=repository, clock=clock)
    await service.reserve_seats(1, [1], "session-a")
    booking = await service.create_booking(1, [1], passengers(1), "session-a", 150_000)

    results = await asyncio.gather(
        service.confirm_booking(booking.id, "PAYR-TEST-000001"),
        service.cancel_booking(booking.id, "Changed plans"),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)
    final = await service.get_booking(booking.id)
    assert final.status in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED)


class SweepingRepository(InMemoryRepository):
    """Runs a lock sweep at `sweep_at` around the confirm write, as a concurrent tick would"""

    def __init__(self, sweep_first=False):
        super().__init__()
        self.sweep_first = sweep_first
        self.sweep_at = None
        self.swept = None

    async def confirm_booking(self, booking, now):
        if self.sweep_first:
            self.swept = await self.delete_expired_seat_locks(self.sweep_at)
            return await super().confirm_booking(booking, now)
        confirmed = await super().confirm_booking(booking, now)
        self.swept = await self.delete_expired_seat_locks(self.sweep_at)
        return confirmed


async def _sweeping_service(repository, clock, test_settings, passengers):
    await repository.add_schedule(
        Schedule(
            id=1,
            departure_at=clock.now() + timedelta(hours=48),
            arrival_at=clock.now() + timedelta(hours=54),
            total_seats=40,
            available_seats=40,
        )
    )
    service = build_booking_service(config=test_settings, repository=repository, clock=clock)
    await service.reserve_seats(1, [1, 2], "session-a")
    booking = await service.create_booking(1, [1, 2], passengers(2), "session-a", 150_000)
    return service, booking


@pytest.mark.asyncio
async def test_sweep_right_after_confirm_keeps_seats_sold(clock, test_settings, passengers):
    repository = SweepingRepository()
    service, booking = await _sweeping_service(repository, clock, test_settings, passengers)
    clock.advance(minutes=14, seconds=59)
    repository.sweep_at = clock.now() + timedelta(seconds=2)

    confirmed = await service.confirm_booking(booking.id, "PAYR-TEST-000001")

    assert confirmed.status == BookingStatus.CONFIRMED
    assert repository.swept == 0
    availability = await service.get_seat_availability(1)
    assert availability.booked_seats == [1, 2]
    with pytest.raises(ConflictError):
        await service.reserve_seats(1, [1], "session-b")
    assert (await repository.get_schedule(1)).available_seats == 38


@pytest.mark.asyncio
async def test_sweep_just_before_confirm_write_rejects_confirm(clock, test_settings, passengers):
    repository = SweepingRepository(sweep_first=True)
    service, booking = await _sweeping_service(repository, clock, test_settings, passengers)
    clock.advance(minutes=14, seconds=59)
    repository.sweep_at = clock.now() + timedelta(seconds=2)

    with pytest.raises(ConflictError) as exc_info:
        await service.confirm_booking(booking.id, "PAYR-TEST-000001")

    assert exc_info.value.seats == [1, 2]
    assert repository.swept == 2
    stored = await service.get_booking(booking.id)
    assert stored.status == BookingStatus.PENDING
    assert stored.confirmed_at is None
    assert (await repository.get_schedule(1)).available_seats == 40
    assert await repository.get_seat_locks(1) == []


@pytest.mark.asyncio
async def test_confirm_with_missing_bound_lock(book, service, repository, schedule):
    booking = await book(seats=(1, 2))
    await repository.delete_booking_seat_locks(booking.id)

    with pytest.raises(ConflictError):
        await service.confirm_booking(booking.id, "PAYR-TEST-000001")
    assert (await service.get_booking(booking.id)).status == BookingStatus.PENDING
    assert (await repository.get_schedule(schedule.id)).available_seats == 40


@pytest.mark.asyncio
async def test_lookups(book, service):
    booking = await book()

    assert (await service.get_booking(booking.id)).id == booking.id
    found = await service.get_booking_by_reference(booking.booking_reference.lower())
    assert found.id == booking.id

    with pytest.raises(NotFoundError):
        await service.get_booking(uuid4())
    with pytest.raises(NotFoundError):
        await service.get_booking_by_reference("BKG-NOPE-0000")


@pytest.mark.asyncio
async def test_customer_bookings_filtered_newest_first(book, service, clock):
    cancelled = await book(seats=(1,), customer_id=42)
    await service.cancel_booking(cancelled.id)
    clock.advance(minutes=1)
    confirmed = await book(seats=(2,), customer_id=42)
    await service.confirm_booking(confirmed.id, "PAYR-TEST-000001")
    clock.advance(minutes=1)
    pending = await book(seats=(3,), customer_id=42)
    clock.advance(minutes=1)
    await book(seats=(4,), owner="session-b", customer_id=7)
    await book(seats=(5,), owner="session-c")

    everything = await service.list_customer_bookings(42)
    upcoming = await service.list_customer_bookings(42, "upcoming")
    history = await service.list_customer_bookings(42, "history")

    assert [b.id for b in everything] == [pending.id, confirmed.id, cancelled.id]
    assert [b.id for b in upcoming] == [pending.id, confirmed.id]
    assert [b.id for b in history] == [cancelled.id]


@pytest.mark.asyncio
async def test_customer_history_includes_expired_and_completed(book, service, clock):
    lapsed = await book(seats=(1,), customer_id=42)
    trip = await book(seats=(2,), owner="session-b", customer_id=42)
    await service.confirm_booking(trip.id, "PAYR-TEST-000001")
    clock.advance(minutes=15)
    await service.sweeper.tick()
    clock.advance(hours=54)
    await service.sweeper.tick()

    history = await service.list_customer_bookings(42, "history")

    assert {b.id: b.status for b in history} == {
        lapsed.id: BookingStatus.EXPIRED,
        trip.id: BookingStatus.COMPLETED,
    }
    assert await service.list_customer_bookings(42, "upcoming") == []
    assert await service.list_customer_bookings(99) == []


@pytest.mark.asyncio
async def test_customer_bookings_unknown_filter(service):
    with pytest.raises(ValidationError) as exc_info:
        await service.list_customer_bookings(42, "archived")
    assert exc_info.value.errors[0]["field"] == "status_filter"


def test_state_machine_uses_configured_hold(repository, test_settings, clock):
    service = build_booking_service(config=test_settings, repository=repository, clock=clock)

    assert isinstance(service.bookings, BookingStateMachine)
    assert service.bookings.hold_duration == timedelta(minutes=test_settings.hold_duration_minutes)
