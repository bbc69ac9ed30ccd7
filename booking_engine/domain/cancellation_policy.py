"""Cancellation policy domain logic.

Refund tiers by time left before departure:
- 24h or more: full refund
- 12h to 24h: 50% refund
- less than 12h: no refund
- departed: not cancellable
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from booking_engine.config import Settings, settings
from booking_engine.core.exceptions import NotCancellableError
from booking_engine.domain.pricing import PricingEngine
from booking_engine.schemas.booking import RefundQuote


@dataclass(frozen=True)
class RefundPolicy:
    """Refund tier thresholds."""

    full_refund_hours: int = 24
    partial_refund_hours: int = 12
    partial_refund_rate: Decimal = Decimal("0.5")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> RefundPolicy:
        return cls(
            full_refund_hours=config.full_refund_hours,
            partial_refund_hours=config.partial_refund_hours,
            partial_refund_rate=Decimal(str(config.partial_refund_rate)),
        )

    def rules(self) -> list[tuple[int, Decimal]]:
        """(min_hours_before_departure, refund_rate), evaluated in order - first match wins."""
        return [
            (self.full_refund_hours, Decimal("1")),
            (self.partial_refund_hours, self.partial_refund_rate),
            (0, Decimal("0")),
        ]


def hours_before_departure(departure_at: datetime, now: datetime) -> float:
    """Hours from `now` until departure; negative once departed."""
    return (departure_at - now).total_seconds() / 3600


class CancellationPolicyEngine:
    """Computes refund quotes. Pure, no shared state."""

    def __init__(
        self,
        policy: RefundPolicy | None = None,
        pricing: PricingEngine | None = None,
    ) -> None:
        self.policy = policy or RefundPolicy.from_settings()
        self.pricing = pricing or PricingEngine()

    def refund_rate(self, hours: float) -> Decimal:
        for min_hours, rate in self.policy.rules():
            if hours >= min_hours:
                return rate
        return Decimal("0")

    def quote(self, total_pay: int, hours: float) -> RefundQuote:
        """Quote the refund for cancelling `hours` before departure.

        Args:
            total_pay: Amount paid for the booking
            hours: Hours left before departure

        Returns:
            RefundQuote: Refund rate, refund amount and retained fee

        Raises:
            NotCancellableError: If the trip has already departed
        """
        if hours < 0:
            raise NotCancellableError()

        rate = self.refund_rate(hours)
        refund_amount = self.pricing.round_amount(Decimal(total_pay) * rate)
        return RefundQuote(
            total_pay=total_pay,
            hours_before_departure=hours,
            refund_rate=float(rate),
            cancellation_fee=total_pay - refund_amount,
            refund_amount=refund_amount,
            currency=self.pricing.policy.currency,
        )

    def get_policy_description(self) -> str:
        """Get human-readable policy description."""
        partial_pct = int(self.policy.partial_refund_rate * 100)
        return (
            f"Full refund up to {self.policy.full_refund_hours} hours before departure. "
            f"{partial_pct}% refund if cancelled {self.policy.partial_refund_hours}-"
            f"{self.policy.full_refund_hours} hours before. "
            f"No refund if cancelled less than {self.policy.partial_refund_hours} hours before."
        )
