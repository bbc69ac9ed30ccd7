"""Payment session state machine."""

from booking_engine.core.exceptions import InvalidTransitionError
from booking_engine.domain.entities import PaymentSessionStatus

PAYMENT_SESSION_TRANSITIONS = {
    PaymentSessionStatus.ACTIVE: {
        PaymentSessionStatus.COMPLETED,
        PaymentSessionStatus.CANCELLED,
        PaymentSessionStatus.EXPIRED,
    },
    PaymentSessionStatus.COMPLETED: set(),
    PaymentSessionStatus.CANCELLED: set(),
    PaymentSessionStatus.EXPIRED: set(),
}


def assert_payment_session_transition(current: str, target: str) -> None:
    allowed = PAYMENT_SESSION_TRANSITIONS.get(PaymentSessionStatus(current), set())
    if PaymentSessionStatus(target) not in allowed:
        raise InvalidTransitionError(
            f"Invalid payment session transition: {PaymentSessionStatus(current).value} → {PaymentSessionStatus(target).value}"
        )
