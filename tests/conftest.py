from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from booking_engine.config import Settings
from booking_engine.core.clock import ManualClock
from booking_engine.domain.entities import Schedule
from booking_engine.gateways.sandbox import SandboxGateway
from booking_engine.repositories.memory import InMemoryRepository
from booking_engine.services.booking_service import build_booking_service

START = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def test_settings():
    """Settings with defaults only, ignoring any local .env"""
    return Settings(_env_file=None, environment="test")


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def gateway():
    return SandboxGateway()


@pytest.fixture
def service(test_settings, repository, gateway, clock):
    """Booking service over the in-memory repository and a manual clock"""
    return build_booking_service(
        config=test_settings, repository=repository, gateway=gateway, clock=clock
    )


@pytest_asyncio.fixture
async def schedule(repository, clock):
    """40-seat trip departing in 48 hours, arriving 6 hours later"""
    trip = Schedule(
        id=1,
        departure_at=clock.now() + timedelta(hours=48),
        arrival_at=clock.now() + timedelta(hours=54),
        total_seats=40,
        available_seats=40,
    )
    await repository.add_schedule(trip)
    return trip


@pytest.fixture
def passengers():
    def _passengers(count, **overrides):
        return [
            {
                "full_name": f"Passenger {i + 1}",
                "phone": "+84 912 345 678",
                "email": f"passenger{i + 1}@example.com",
                **overrides,
            }
            for i in range(count)
        ]

    return _passengers


@pytest.fixture
def valid_card():
    return {
        "number": "4111 1111 1111 1111",
        "brand": "visa",
        "expiry_month": 12,
        "expiry_year": 2030,
        "cvv": "123",
        "holder_name": "Passenger 1",
    }


@pytest.fixture
def declined_card(valid_card):
    return {**valid_card, "number": "0000-0000-0000-0000"}


@pytest.fixture
def book(service, schedule, passengers):
    """Reserve seats and create a pending booking on them"""

    async def _book(seats=(1, 2), owner="session-a", price=150_000, **kwargs):
        await service.reserve_seats(schedule.id, list(seats), owner)
        return await service.create_booking(
            schedule.id, list(seats), passengers(len(seats)), owner, price, **kwargs
        )

    return _book
