"""Deterministic sandbox gateway.

Any well-formed card succeeds except the all-zero card, which is declined.
"""

import asyncio

from booking_engine.gateways.base import (
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
)
from booking_engine.schemas.payment import CardDetails
from booking_engine.utils.booking_number import generate_payment_reference
from booking_engine.utils.validators import clean_card_number

DECLINED_CARD_NUMBER = "0000000000000000"


class SandboxGateway(PaymentGateway):
    """Sandbox gateway with optional simulated latency."""

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.SANDBOX

    async def _simulate_latency(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    async def charge(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        card: CardDetails,
    ) -> PaymentResult:
        await self._simulate_latency()

        if clean_card_number(card.number) == DECLINED_CARD_NUMBER:
            return PaymentResult(
                success=False,
                error_message="Insufficient funds",
                raw_response={"type": "sandbox", "status": "declined", "reference_id": reference_id},
            )

        return PaymentResult(
            success=True,
            transaction_id=generate_payment_reference(),
            raw_response={
                "type": "sandbox",
                "status": "captured",
                "reference_id": reference_id,
                "amount": amount,
                "currency": currency,
            },
        )

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        await self._simulate_latency()
        return RefundResult(
            success=True,
            refund_id=f"refund_{transaction_id}",
            raw_response={
                "type": "sandbox_refund",
                "status": "refunded",
                "amount": amount,
                "reason": reason,
            },
        )
