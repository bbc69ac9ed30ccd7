"""Card and seat input validation utilities."""

import re
from datetime import datetime
from typing import Any, Iterable

CARD_BRANDS = {"visa", "mastercard", "amex", "jcb", "napas"}

# Declared brands whose security code has four digits
FOUR_DIGIT_CVV_BRANDS = {"amex"}


def clean_card_number(number: str) -> str:
    """Remove spaces and dashes from a card number."""
    return re.sub(r"[\s\-]", "", number or "")


def validate_card_number(number: str) -> bool:
    """Validate card number length.

    Args:
        number: Card number, spaces and dashes allowed

    Returns:
        bool: True if the number has exactly 16 digits
    """
    cleaned = clean_card_number(number)
    return cleaned.isdigit() and len(cleaned) == 16


def validate_cvv(cvv: str, brand: str) -> bool:
    """Validate security code length for the declared card brand."""
    expected = 4 if brand.lower() in FOUR_DIGIT_CVV_BRANDS else 3
    return bool(cvv) and cvv.isdigit() and len(cvv) == expected


def normalize_expiry_year(year: int) -> int:
    """Expand two-digit years (27 -> 2027)."""
    return year + 2000 if year < 100 else year


def validate_expiry(month: int, year: int, now: datetime) -> bool:
    """Check that the card does not expire before the current month."""
    if not 1 <= month <= 12:
        return False
    return (normalize_expiry_year(year), month) >= (now.year, now.month)


def card_errors(
    number: str,
    brand: str,
    expiry_month: int,
    expiry_year: int,
    cvv: str,
    now: datetime,
) -> list[dict[str, Any]]:
    """Collect every card field problem.

    Returns:
        list: One {"field", "message"} entry per invalid field, empty when valid
    """
    errors: list[dict[str, Any]] = []
    if brand.lower() not in CARD_BRANDS:
        errors.append({"field": "brand", "message": f"Unsupported card brand '{brand}'"})
    if not validate_card_number(number):
        errors.append({"field": "number", "message": "Card number must have 16 digits"})
    if not validate_cvv(cvv, brand):
        expected = 4 if brand.lower() in FOUR_DIGIT_CVV_BRANDS else 3
        errors.append({"field": "cvv", "message": f"CVV must have {expected} digits"})
    if not validate_expiry(expiry_month, expiry_year, now):
        errors.append({"field": "expiry", "message": "Card is expired or expiry date is invalid"})
    return errors


def parse_seat_numbers(seat_numbers: Iterable[Any]) -> list[int]:
    """Convert raw seat numbers to ints, keeping order and duplicates.

    Raises:
        ValueError: If a seat is not a positive integer
    """
    parsed = []
    for raw in seat_numbers:
        if isinstance(raw, bool):
            raise ValueError(f"Invalid seat number: {raw!r}")
        try:
            seat = int(str(raw).strip())
        except ValueError:
            raise ValueError(f"Invalid seat number: {raw!r}") from None
        if seat <= 0:
            raise ValueError(f"Invalid seat number: {raw!r}")
        parsed.append(seat)
    return parsed


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """Mask sensitive data showing only last few characters.

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at end

    Returns:
        str: Masked string like '************7890'
    """
    if len(data) <= visible_chars:
        return "*" * len(data)

    masked_length = len(data) - visible_chars
    return "*" * masked_length + data[-visible_chars:]
