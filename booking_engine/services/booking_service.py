"""Booking engine facade.

The single entry point used by the web layer. Wires the seat lock, booking,
payment and sweeper services over one repository, gateway and clock.
"""

from datetime import timedelta
from typing import Any, Iterable
from uuid import UUID

from booking_engine.config import Settings, settings
from booking_engine.core.clock import Clock, SystemClock
from booking_engine.domain.cancellation_policy import CancellationPolicyEngine, RefundPolicy
from booking_engine.domain.entities import Booking, PaymentSession, SeatLock
from booking_engine.domain.pricing import PricingEngine, PricingPolicy
from booking_engine.gateways.base import PaymentGateway
from booking_engine.gateways.sandbox import SandboxGateway
from booking_engine.repositories.base import Repository
from booking_engine.repositories.memory import InMemoryRepository
from booking_engine.schemas.booking import PricingBreakdown, RefundQuote, SeatAvailability
from booking_engine.schemas.payment import CardDetails, PaymentReceipt
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.expiration_sweeper import ExpirationSweeper
from booking_engine.services.payment_service import PaymentSessionCoordinator
from booking_engine.services.seat_lock_service import SeatLockManager


class BookingService:
    """Operations exposed to callers of the engine."""

    def __init__(
        self,
        repository: Repository,
        seat_locks: SeatLockManager,
        bookings: BookingStateMachine,
        payments: PaymentSessionCoordinator,
        sweeper: ExpirationSweeper,
    ) -> None:
        self.repository = repository
        self.seat_locks = seat_locks
        self.bookings = bookings
        self.payments = payments
        self.sweeper = sweeper

    # ==================== SEATS ====================

    async def reserve_seats(
        self,
        schedule_id: int,
        seat_numbers: Iterable[Any],
        owner_session_id: str,
        ttl: timedelta | None = None,
    ) -> list[SeatLock]:
        return await self.seat_locks.acquire(schedule_id, seat_numbers, owner_session_id, ttl)

    async def release_seats(
        self, schedule_id: int, seat_numbers: Iterable[Any], owner_session_id: str
    ) -> int:
        return await self.seat_locks.release(schedule_id, seat_numbers, owner_session_id)

    async def renew_seats(self, owner_session_id: str) -> list[SeatLock]:
        return await self.seat_locks.renew(owner_session_id)

    async def list_seat_locks(self, owner_session_id: str) -> list[SeatLock]:
        return await self.seat_locks.list_locks(owner_session_id)

    async def get_seat_availability(self, schedule_id: int) -> SeatAvailability:
        return await self.seat_locks.availability(schedule_id)

    # ==================== PRICING ====================

    def calculate_price(self, price_per_seat: Any, num_seats: Any, discount: Any = 0) -> PricingBreakdown:
        return self.bookings.pricing.calculate(price_per_seat, num_seats, discount)

    # ==================== BOOKINGS ====================

    async def create_booking(
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
        return await self.bookings.create(
            schedule_id,
            seat_numbers,
            passengers,
            owner_session_id,
            price_per_seat,
            customer_id=customer_id,
            guest_email=guest_email,
            guest_phone=guest_phone,
            discount=discount,
        )

    async def confirm_booking(self, booking_id: UUID, payment_reference: str) -> Booking:
        return await self.bookings.confirm(booking_id, payment_reference)

    async def cancel_booking(
        self, booking_id: UUID, reason: str | None = None
    ) -> tuple[Booking, RefundQuote | None]:
        return await self.bookings.cancel(booking_id, reason)

    async def quote_refund(self, booking_id: UUID) -> RefundQuote:
        return await self.bookings.quote_refund(booking_id)

    async def get_booking(self, booking_id: UUID) -> Booking:
        return await self.bookings.get(booking_id)

    async def get_booking_by_reference(self, booking_reference: str) -> Booking:
        return await self.bookings.get_by_reference(booking_reference)

    async def list_customer_bookings(self, customer_id: int, status_filter: str | None = None) -> list[Booking]:
        return await self.bookings.list_for_customer(customer_id, status_filter)

    # ==================== PAYMENTS ====================

    async def create_payment_session(self, booking_id: UUID) -> PaymentSession:
        return await self.payments.create_session(booking_id)

    async def get_payment_session(self, payment_id: str) -> PaymentSession:
        return await self.payments.fetch_session(payment_id)

    async def process_payment(
        self, payment_id: str, card: CardDetails | dict[str, Any]
    ) -> PaymentReceipt:
        return await self.payments.process_payment(payment_id, card)

    async def cancel_payment_session(self, payment_id: str) -> PaymentSession:
        return await self.payments.cancel_session(payment_id)


def build_booking_service(
    config: Settings = settings,
    repository: Repository | None = None,
    gateway: PaymentGateway | None = None,
    clock: Clock | None = None,
) -> BookingService:
    """Wire a booking service from settings.

    Args:
        config: Settings to read policies and durations from
        repository: Storage, in-memory when omitted
        gateway: Payment gateway, the sandbox gateway when omitted
        clock: Time source, the system clock when omitted

    Returns:
        BookingService: Ready-to-use facade; its sweeper is not started
    """
    repository = repository or InMemoryRepository()
    gateway = gateway or SandboxGateway(latency=config.sandbox_latency_seconds)
    clock = clock or SystemClock()

    pricing = PricingEngine(PricingPolicy.from_settings(config))
    cancellation_policy = CancellationPolicyEngine(RefundPolicy.from_settings(config), pricing)
    seat_locks = SeatLockManager(repository, clock, config=config)
    bookings = BookingStateMachine(
        repository,
        seat_locks,
        clock,
        pricing=pricing,
        cancellation_policy=cancellation_policy,
        config=config,
    )
    payments = PaymentSessionCoordinator(repository, bookings, gateway, clock, config=config)
    sweeper = ExpirationSweeper(repository, seat_locks, bookings, clock, config=config)
    return BookingService(repository, seat_locks, bookings, payments, sweeper)
