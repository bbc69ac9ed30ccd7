"""Payment-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class CardDetails(BaseModel):
    """Card submitted for a payment session.

    Only shape is checked here; length, brand and expiry rules need the
    engine clock and are applied by the payment coordinator.
    """

    number: str = Field(..., max_length=32)
    brand: str = Field(..., max_length=20)
    expiry_month: int
    expiry_year: int
    cvv: str = Field(..., max_length=8)
    holder_name: str | None = Field(None, max_length=200)

    @field_validator("number", "cvv", "brand")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()


class PaymentReceipt(BaseModel):
    """Successful payment outcome."""

    payment_id: str
    payment_reference: str
    booking_id: UUID
    booking_reference: str
    amount: int
    currency: str
