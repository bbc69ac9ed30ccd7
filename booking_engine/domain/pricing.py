"""Fare calculation.

Pricing rules:
- price per seat is clamped to [min_price, max_price]; invalid input uses the default price
- bus fare = price per seat * seats, minus an optional discount in [0, 1)
- convenience fee and bank charge are a percentage of the bus fare plus a fixed part
- every amount is rounded half-up to the nearest rounding unit (1,000 VND)
- total = bus fare + convenience fee + bank charge, clamped to [min_total, max_total]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from booking_engine.config import Settings, settings
from booking_engine.schemas.booking import PricingBreakdown

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingPolicy:
    """Configured pricing constants."""

    currency: str = "VND"
    default_price: int = 150_000
    min_price: int = 50_000
    max_price: int = 2_000_000
    convenience_fee_rate: Decimal = Decimal("0.05")
    convenience_fee_fixed: int = 0
    bank_charge_rate: Decimal = Decimal("0.02")
    bank_charge_fixed: int = 0
    rounding_unit: int = 1_000
    min_total: int = 50_000
    max_total: int = 100_000_000

    @classmethod
    def from_settings(cls, config: Settings = settings) -> PricingPolicy:
        return cls(
            currency=config.currency,
            default_price=config.default_price_per_seat,
            min_price=config.min_price_per_seat,
            max_price=config.max_price_per_seat,
            convenience_fee_rate=Decimal(str(config.convenience_fee_rate)),
            convenience_fee_fixed=config.convenience_fee_fixed,
            bank_charge_rate=Decimal(str(config.bank_charge_rate)),
            bank_charge_fixed=config.bank_charge_fixed,
            rounding_unit=config.rounding_unit,
            min_total=config.min_total,
            max_total=config.max_total,
        )


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


class PricingEngine:
    """Deterministic fare calculator. Stateless apart from its policy."""

    def __init__(self, policy: PricingPolicy | None = None) -> None:
        self.policy = policy or PricingPolicy.from_settings()

    def round_amount(self, value: Decimal | int | float) -> int:
        """Round half-up to the nearest rounding unit."""
        unit = Decimal(self.policy.rounding_unit)
        units = (Decimal(str(value)) / unit).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(units * unit)

    def validate_price(self, price: Any) -> int:
        """Coerce a raw per-seat price into [min_price, max_price].

        Missing, non-numeric or non-positive prices fall back to the default price.
        """
        value = _to_decimal(price)
        if value is None or value <= 0:
            logger.warning(f"Invalid seat price {price!r}, using default {self.policy.default_price}")
            return self.policy.default_price
        if value < self.policy.min_price:
            logger.warning(f"Seat price {value} below minimum, using {self.policy.min_price}")
            return self.policy.min_price
        if value > self.policy.max_price:
            logger.warning(f"Seat price {value} above maximum, using {self.policy.max_price}")
            return self.policy.max_price
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def coerce_seat_count(num_seats: Any) -> int:
        """Positive seat count; zero, negative and non-numeric input count as one seat."""
        value = _to_decimal(num_seats)
        if value is None:
            return 1
        seats = int(value)
        return seats if seats > 0 else 1

    @staticmethod
    def coerce_discount(discount: Any) -> Decimal:
        """Discount rate in [0, 1); anything else means no discount."""
        value = _to_decimal(discount)
        if value is None or value <= 0 or value >= 1:
            return Decimal("0")
        return value

    def calculate(self, price_per_seat: Any, num_seats: Any, discount: Any = 0) -> PricingBreakdown:
        """Calculate the fare breakdown for a number of seats.

        Args:
            price_per_seat: Raw per-seat price
            num_seats: Number of seats
            discount: Discount rate (0-1)

        Returns:
            PricingBreakdown: Rounded breakdown with the total clamped to the policy bounds
        """
        policy = self.policy
        price = self.validate_price(price_per_seat)
        seats = self.coerce_seat_count(num_seats)
        rate = self.coerce_discount(discount)

        base_fare = Decimal(price) * seats
        discount_amount = base_fare * rate
        bus_fare = base_fare - discount_amount

        convenience_fee = bus_fare * policy.convenience_fee_rate + policy.convenience_fee_fixed
        bank_charge = bus_fare * policy.bank_charge_rate + policy.bank_charge_fixed

        rounded_bus_fare = self.round_amount(bus_fare)
        rounded_convenience_fee = self.round_amount(convenience_fee)
        rounded_bank_charge = self.round_amount(bank_charge)
        total_pay = rounded_bus_fare + rounded_convenience_fee + rounded_bank_charge

        if total_pay < policy.min_total:
            logger.warning(f"Total {total_pay} below minimum, adjusting to {policy.min_total}")
            total_pay = policy.min_total
        elif total_pay > policy.max_total:
            logger.warning(f"Total {total_pay} above maximum, adjusting to {policy.max_total}")
            total_pay = policy.max_total

        return PricingBreakdown(
            price_per_seat=self.round_amount(price),
            num_seats=seats,
            base_fare=self.round_amount(base_fare),
            discount_amount=self.round_amount(discount_amount),
            bus_fare=rounded_bus_fare,
            convenience_fee=rounded_convenience_fee,
            bank_charge=rounded_bank_charge,
            total_pay=total_pay,
            currency=policy.currency,
        )
