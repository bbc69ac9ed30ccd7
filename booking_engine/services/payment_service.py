"""Payment session service.

Brokers the pay-or-cancel protocol for a pending booking. A declined or
timed-out charge leaves the booking and its session untouched so the same hold
can be retried until it expires.
"""

import asyncio
import logging
import weakref
from datetime import timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from booking_engine.config import Settings, settings
from booking_engine.core.clock import Clock, SystemClock
from booking_engine.core.exceptions import (
    AppException,
    ConflictError,
    ExpiredError,
    ExternalServiceError,
    GatewayDeclinedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from booking_engine.domain.entities import BookingStatus, PaymentSession, PaymentSessionStatus
from booking_engine.domain.payment_state import assert_payment_session_transition
from booking_engine.gateways.base import PaymentGateway
from booking_engine.repositories.base import Repository
from booking_engine.schemas.payment import CardDetails, PaymentReceipt
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.utils.booking_number import generate_payment_id
from booking_engine.utils.validators import card_errors, clean_card_number, mask_sensitive_data

logger = logging.getLogger(__name__)


def _parse_card(card: CardDetails | dict[str, Any]) -> CardDetails:
    if isinstance(card, CardDetails):
        return card
    try:
        return CardDetails.model_validate(card)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in e.errors()
        ]
        raise ValidationError("Invalid card details", errors=errors) from None


class PaymentSessionCoordinator:
    """Service for payment sessions."""

    def __init__(
        self,
        repository: Repository,
        bookings: BookingStateMachine,
        gateway: PaymentGateway,
        clock: Clock | None = None,
        config: Settings = settings,
    ) -> None:
        self.repository = repository
        self.bookings = bookings
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.session_duration = timedelta(minutes=config.payment_session_minutes)
        self.gateway_timeout = config.gateway_timeout_seconds
        self._booking_mutexes: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _mutex(self, booking_id: UUID) -> asyncio.Lock:
        mutex = self._booking_mutexes.get(booking_id)
        if mutex is None:
            mutex = asyncio.Lock()
            self._booking_mutexes[booking_id] = mutex
        return mutex

    async def _close(
        self,
        session: PaymentSession,
        status: PaymentSessionStatus,
        reason: str | None = None,
    ) -> bool:
        """Move an active session to a final status. Returns False if it was already closed."""
        assert_payment_session_transition(session.status, status)
        session.status = status
        session.failure_reason = reason
        if status == PaymentSessionStatus.COMPLETED:
            session.completed_at = self.clock.now()
        closed = await self.repository.compare_and_set_payment_session(session, PaymentSessionStatus.ACTIVE)
        if not closed:
            logger.warning(f"Payment session {session.payment_id} was closed concurrently")
        return closed

    async def create_session(self, booking_id: UUID) -> PaymentSession:
        """Open a payment session for a pending booking.

        The session never outlives the booking's hold.

        Raises:
            NotFoundError: Unknown booking
            InvalidTransitionError: Booking is not pending
            ExpiredError: Booking hold has lapsed
            ConflictError: Booking already has an active session
        """
        async with self._mutex(booking_id):
            booking = await self.bookings.get(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot pay for booking {booking.booking_reference} in status "
                    f"{BookingStatus(booking.status).value}"
                )

            now = self.clock.now()
            if booking.expires_at is None or now >= booking.expires_at:
                raise ExpiredError(f"Booking {booking.booking_reference} hold has expired")

            active = await self.repository.get_active_payment_session(booking_id)
            if active is not None:
                if now < active.expires_at:
                    raise ConflictError(
                        f"Booking {booking.booking_reference} already has an active payment session"
                    )
                await self._close(active, PaymentSessionStatus.EXPIRED, "Session expired")

            session = PaymentSession(
                payment_id=generate_payment_id(now),
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                amount=booking.total_pay,
                currency=booking.pricing.currency,
                created_at=now,
                expires_at=min(now + self.session_duration, booking.expires_at),
            )
            if not await self.repository.add_payment_session(session):
                raise ConflictError(
                    f"Booking {booking.booking_reference} already has an active payment session"
                )

        logger.info(
            f"Payment session {session.payment_id} opened for booking {booking.booking_reference}, "
            f"{session.amount} {session.currency}"
        )
        return session

    async def fetch_session(self, payment_id: str) -> PaymentSession:
        """Get a payment session, expiring it if its time is up.

        Raises:
            NotFoundError: Unknown session
            ExpiredError: Session has expired
        """
        session = await self.repository.get_payment_session(payment_id)
        if session is None:
            raise NotFoundError("Payment session", payment_id)

        if session.status == PaymentSessionStatus.ACTIVE and self.clock.now() >= session.expires_at:
            await self._close(session, PaymentSessionStatus.EXPIRED, "Session expired")
            session = await self.repository.get_payment_session(payment_id)

        if session.status == PaymentSessionStatus.EXPIRED:
            raise ExpiredError(f"Payment session {payment_id} has expired")
        return session

    async def cancel_session(self, payment_id: str) -> PaymentSession:
        """Cancel an active session and the pending booking behind it."""
        session = await self.repository.get_payment_session(payment_id)
        if session is None:
            raise NotFoundError("Payment session", payment_id)

        async with self._mutex(session.booking_id):
            session = await self.repository.get_payment_session(payment_id)
            assert_payment_session_transition(session.status, PaymentSessionStatus.CANCELLED)
            if not await self._close(session, PaymentSessionStatus.CANCELLED, "Cancelled by customer"):
                raise ConflictError(f"Payment session {payment_id} was modified concurrently")

            booking = await self.bookings.get(session.booking_id)
            if booking.status == BookingStatus.PENDING:
                await self.bookings.cancel(booking.id, reason="Payment cancelled")

        logger.info(f"Payment session {payment_id} cancelled")
        return session

    async def process_payment(
        self, payment_id: str, card: CardDetails | dict[str, Any]
    ) -> PaymentReceipt:
        """Charge a card for an active session and confirm the booking.

        Args:
            payment_id: Payment session ID
            card: Card details

        Returns:
            PaymentReceipt: Settled payment and confirmed booking reference

        Raises:
            ValidationError: Card fields are invalid; nothing is charged
            NotFoundError: Unknown session
            ExpiredError: Session or hold expired
            InvalidTransitionError: Session is closed or the booking is no longer pending
            GatewayDeclinedError: Charge declined; session and booking stay open
            ExternalServiceError: Gateway did not answer in time; nothing changes
        """
        card = _parse_card(card)
        errors = card_errors(
            card.number, card.brand, card.expiry_month, card.expiry_year, card.cvv, self.clock.now()
        )
        if errors:
            raise ValidationError("Invalid card details", errors=errors)

        session = await self.fetch_session(payment_id)
        async with self._mutex(session.booking_id):
            session = await self.fetch_session(payment_id)
            if session.status != PaymentSessionStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Payment session {payment_id} is {PaymentSessionStatus(session.status).value}"
                )

            booking = await self.bookings.get(session.booking_id)
            if booking.status != BookingStatus.PENDING:
                await self._close(session, PaymentSessionStatus.CANCELLED, "Booking is no longer pending")
                raise InvalidTransitionError(
                    f"Booking {booking.booking_reference} is {BookingStatus(booking.status).value}"
                )

            masked = mask_sensitive_data(clean_card_number(card.number))
            try:
                result = await asyncio.wait_for(
                    self.gateway.charge(session.amount, session.currency, payment_id, card),
                    timeout=self.gateway_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Gateway timed out charging session {payment_id} (card {masked})")
                raise ExternalServiceError(
                    self.gateway.gateway_type.value, "Payment gateway timed out"
                ) from None

            if not result.success:
                reason = result.error_message or "Payment declined"
                logger.warning(f"Payment {payment_id} declined: {reason} (card {masked})")
                raise GatewayDeclinedError(reason)

            payment_reference = result.transaction_id
            try:
                await self.bookings.confirm(booking.id, payment_reference)
            except AppException as e:
                logger.error(
                    f"Booking {booking.booking_reference} could not be confirmed after charge "
                    f"{payment_reference}: {e.detail}. Refunding."
                )
                refund = await self.gateway.process_refund(
                    payment_reference, session.amount, f"Booking confirmation failed: {e.detail}"
                )
                if not refund.success:
                    logger.error(f"Refund of charge {payment_reference} failed: {refund.error_message}")
                final = (
                    PaymentSessionStatus.EXPIRED
                    if isinstance(e, ExpiredError)
                    else PaymentSessionStatus.CANCELLED
                )
                await self._close(session, final, str(e.detail))
                raise

            session.payment_reference = payment_reference
            await self._close(session, PaymentSessionStatus.COMPLETED)

        logger.info(f"Payment {payment_id} settled as {payment_reference} (card {masked})")
        return PaymentReceipt(
            payment_id=payment_id,
            payment_reference=payment_reference,
            booking_id=booking.id,
            booking_reference=booking.booking_reference,
            amount=session.amount,
            currency=session.currency,
        )
