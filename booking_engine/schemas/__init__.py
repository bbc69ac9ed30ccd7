"""Pydantic schemas exchanged with the calling layer."""

from booking_engine.schemas.booking import (
    Passenger,
    PricingBreakdown,
    RefundQuote,
    SeatAvailability,
)
from booking_engine.schemas.payment import CardDetails, PaymentReceipt

__all__ = [
    # Booking
    "Passenger",
    "PricingBreakdown",
    "RefundQuote",
    "SeatAvailability",
    # Payment
    "CardDetails",
    "PaymentReceipt",
]
