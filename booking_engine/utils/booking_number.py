"""Booking reference, guest identifier and payment identifier generation."""

import random
import re
import string
from datetime import UTC, datetime

BOOKING_REFERENCE_PATTERN = re.compile(r"BKG-[A-Z0-9]+-[A-Z0-9]+")

_ALPHABET = string.ascii_uppercase + string.digits
_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _time_part(now: datetime | None = None) -> str:
    """Milliseconds since the epoch in uppercase base36."""
    moment = now or datetime.now(UTC)
    return _base36(int(moment.timestamp() * 1000))


def _random_part(k: int, alphabet: str = _ALPHABET) -> str:
    return "".join(random.choices(alphabet, k=k))


def generate_booking_reference(now: datetime | None = None) -> str:
    """Generate a booking reference in format BKG-<time>-<random>.

    Uniqueness is not guaranteed by generation alone; the repository enforces it
    and callers regenerate on collision.

    Returns:
        str: Booking reference like 'BKG-M5X2K1QZ-7QF3'
    """
    return f"BKG-{_time_part(now)}-{_random_part(4)}"


def is_valid_booking_reference(reference: object) -> bool:
    """Check that a value is a well-formed booking reference."""
    if not reference or not isinstance(reference, str):
        return False
    return BOOKING_REFERENCE_PATTERN.fullmatch(reference) is not None


def generate_guest_identifier(
    email: str | None,
    phone: str | None,
    now: datetime | None = None,
) -> str:
    """Generate an identifier linking a booking to guest contact details.

    Args:
        email: Guest email (first 8 characters, lowercased, are kept)
        phone: Guest phone (last 4 digits are kept)
        now: Time used for the time component

    Returns:
        str: Identifier like 'GUEST-M5X2K1QZ-jane.doe-4567', at most 50 characters
    """
    email_part = email.lower()[:8] if email else ""
    phone_part = re.sub(r"\D", "", phone)[-4:] if phone else ""
    return f"GUEST-{_time_part(now)}-{email_part}-{phone_part}"[:50]


def generate_payment_id(now: datetime | None = None) -> str:
    """Generate a payment session id like 'PAY-M5X2K1QZ-9F3A12BC'."""
    return f"PAY-{_time_part(now)}-{_random_part(8, string.hexdigits.upper()[:16])}"


def generate_payment_reference(now: datetime | None = None) -> str:
    """Generate a settled payment reference like 'PAYR-M5X2K1QZ-A1B2C3'."""
    return f"PAYR-{_time_part(now)}-{_random_part(6, string.hexdigits.upper()[:16])}"
