"""Booking-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Passenger(BaseModel):
    """Traveller occupying one seat."""

    full_name: str = Field(..., min_length=1, max_length=200)
    phone: str | None = Field(None, max_length=32)
    email: str | None = Field(None, max_length=255)
    age: int | None = Field(None, ge=0, le=130)

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("full_name must not be blank")
        return v


class PricingBreakdown(BaseModel):
    """Fare breakdown for a booking. All amounts in whole currency units."""

    model_config = ConfigDict(frozen=True)

    price_per_seat: int
    num_seats: int
    base_fare: int
    discount_amount: int = 0
    bus_fare: int
    convenience_fee: int
    bank_charge: int
    total_pay: int
    currency: str


class RefundQuote(BaseModel):
    """Refund owed when cancelling a confirmed booking."""

    model_config = ConfigDict(frozen=True)

    total_pay: int
    hours_before_departure: float
    refund_rate: float
    cancellation_fee: int
    refund_amount: int
    currency: str


class SeatAvailability(BaseModel):
    """Seat map state of one schedule."""

    schedule_id: int
    total_seats: int
    booked_seats: list[int]
    locked_seats: list[int]
    available_seats_count: int
