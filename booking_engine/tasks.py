"""Celery background tasks."""

import asyncio
import logging

from celery import shared_task

from booking_engine.config import settings
from booking_engine.database import build_engine, build_session_factory
from booking_engine.repositories.sql import SqlAlchemyRepository
from booking_engine.services.booking_service import BookingService, build_booking_service

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


# ==================== SWEEP TASKS ====================


@shared_task(bind=True, max_retries=3)
def sweep_expired_bookings(self):
    """Expire lapsed holds and advance departed or arrived schedules.

    Runs every `sweep_interval_seconds` (5 minutes by default).
    """
    try:
        result = run_async(_sweep_expired_bookings())
        return {"status": "success", **result}
    except Exception as exc:
        logger.error(f"Expiration sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=60)


async def _sweep_expired_bookings(service: BookingService | None = None) -> dict[str, int]:
    """Async implementation of the sweep.

    Without a service, one is built on the configured database and disposed of
    afterwards.
    """
    if service is not None:
        result = await service.sweeper.tick()
        return result.as_dict()

    engine = build_engine(settings.database_url)
    try:
        repository = SqlAlchemyRepository(build_session_factory(engine))
        result = await build_booking_service(repository=repository).sweeper.tick()
        return result.as_dict()
    finally:
        await engine.dispose()
