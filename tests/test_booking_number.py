import re
from datetime import UTC, datetime

import pytest

from booking_engine.utils.booking_number import (
    BOOKING_REFERENCE_PATTERN,
    generate_booking_reference,
    generate_guest_identifier,
    generate_payment_id,
    generate_payment_reference,
    is_valid_booking_reference,
)


def test_generated_references_match_format():
    """Every generated reference is well formed and accepted"""
    for _ in range(200):
        reference = generate_booking_reference()
        assert BOOKING_REFERENCE_PATTERN.match(reference)
        assert is_valid_booking_reference(reference)


def test_reference_time_part_follows_clock():
    now = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)
    first = generate_booking_reference(now)
    second = generate_booking_reference(now)

    assert first.split("-")[1] == second.split("-")[1]
    assert len(first.split("-")[2]) == 4


@pytest.mark.parametrize(
    "value",
    [None, 12345, 3.5, ["BKG-ABC-1234"], "", "bkg-abc-1234", "BKG-abc-1234", "BKG-ABC-12$4", "BKG--1234", "BKG-ABC", "XYZ-ABC-1234", "BKG-ABC-1234\n", " BKG-ABC-1234"],
)
def test_invalid_references_rejected(value):
    assert is_valid_booking_reference(value) is False


def test_generated_reference_with_trailing_newline_rejected():
    reference = generate_booking_reference()

    assert is_valid_booking_reference(reference) is True
    assert is_valid_booking_reference(reference + "\n") is False


def test_guest_identifier_format():
    now = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)
    identifier = generate_guest_identifier("Jane.Doe@Example.com", "+84 912-345-678", now)

    assert identifier.startswith("GUEST-")
    assert identifier.endswith("-jane.doe-5678")
    assert len(identifier) <= 50


def test_guest_identifier_tolerates_missing_parts():
    assert generate_guest_identifier(None, None).startswith("GUEST-")
    assert generate_guest_identifier(None, None).endswith("--")
    assert generate_guest_identifier("a@b.co", None).endswith("-a@b.co-")
    assert generate_guest_identifier(None, "0912345678").endswith("--5678")


def test_guest_identifier_truncated():
    identifier = generate_guest_identifier("x" * 100 + "@example.com", "9" * 40)
    assert len(identifier) <= 50


def test_payment_identifiers():
    assert re.match(r"^PAY-[0-9A-Z]+-[0-9A-F]{8}$", generate_payment_id())
    assert re.match(r"^PAYR-[0-9A-Z]+-[0-9A-F]{6}$", generate_payment_reference())
