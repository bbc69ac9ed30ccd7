"""Card gateway interface used by the payment session coordinator.

Adapters only talk to the processor. Session and booking state is handled by
the coordinator, never here.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from booking_engine.schemas.payment import CardDetails


class GatewayType(str, Enum):
    """Supported payment gateways."""

    SANDBOX = "sandbox"


@dataclass
class PaymentResult:
    """Result of a payment operation."""

    success: bool
    transaction_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @abstractmethod
    async def charge(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        card: CardDetails,
    ) -> PaymentResult:
        """Charge a card.

        Args:
            amount: Amount in whole currency units (VND has no minor unit)
            currency: Currency code
            reference_id: Internal reference (payment_id)
            card: Already validated card details

        Returns:
            PaymentResult; transaction_id is the payment reference on success
        """
        pass

    @abstractmethod
    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process a refund.

        Args:
            transaction_id: Original payment transaction ID
            amount: Refund amount
            reason: Refund reason

        Returns:
            RefundResult with refund details
        """
        pass
