from datetime import UTC, datetime, timedelta

import pytest

from booking_engine.core.clock import ManualClock, SystemClock


def test_system_clock_is_utc():
    assert SystemClock().now().tzinfo is UTC


def test_manual_clock_advances():
    clock = ManualClock(datetime(2025, 3, 1, 12, 0))

    assert clock.now() == datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    assert clock.advance(minutes=15) == datetime(2025, 3, 1, 12, 15, tzinfo=UTC)
    clock.advance(timedelta(hours=1))
    assert clock.now() == datetime(2025, 3, 1, 13, 15, tzinfo=UTC)


def test_manual_clock_cannot_go_backwards():
    clock = ManualClock()

    with pytest.raises(ValueError):
        clock.advance(seconds=-1)
