from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from booking_engine.core.exceptions import NotCancellableError
from booking_engine.domain.cancellation_policy import (
    CancellationPolicyEngine,
    RefundPolicy,
    hours_before_departure,
)
from booking_engine.domain.pricing import PricingEngine, PricingPolicy


@pytest.fixture
def engine():
    return CancellationPolicyEngine(RefundPolicy(), PricingEngine(PricingPolicy()))


@pytest.mark.parametrize(
    "hours,rate,refund",
    [
        (30, 1.0, 100_000),
        (24, 1.0, 100_000),
        (15, 0.5, 50_000),
        (12, 0.5, 50_000),
        (5, 0.0, 0),
        (0, 0.0, 0),
    ],
)
def test_refund_tiers(engine, hours, rate, refund):
    quote = engine.quote(100_000, hours)

    assert quote.refund_rate == rate
    assert quote.refund_amount == refund
    assert quote.cancellation_fee == 100_000 - refund
    assert quote.total_pay == 100_000
    assert quote.currency == "VND"


def test_departed_trip_not_cancellable(engine):
    with pytest.raises(NotCancellableError) as exc_info:
        engine.quote(100_000, -1)
    assert exc_info.value.status_code == 400


def test_partial_refund_rounded_to_currency_unit(engine):
    quote = engine.quote(107_000, 15)

    assert quote.refund_amount == 54_000  # 53,500
    assert quote.cancellation_fee == 53_000


def test_custom_policy():
    engine = CancellationPolicyEngine(
        RefundPolicy(full_refund_hours=48, partial_refund_hours=6, partial_refund_rate=Decimal("0.25")),
        PricingEngine(PricingPolicy()),
    )

    assert engine.quote(100_000, 30).refund_rate == 0.25
    assert engine.quote(100_000, 48).refund_rate == 1.0
    assert engine.quote(100_000, 5).refund_rate == 0.0


def test_hours_before_departure():
    now = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)

    assert hours_before_departure(now + timedelta(hours=30), now) == 30
    assert hours_before_departure(now + timedelta(minutes=90), now) == 1.5
    assert hours_before_departure(now - timedelta(hours=1), now) == -1


def test_policy_description(engine):
    description = engine.get_policy_description()

    assert "24 hours" in description
    assert "50%" in description
