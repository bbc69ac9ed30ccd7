"""Celery worker configuration.

Runs the expiration sweep out of process for deployments where the web
workers do not host the in-process sweeper loop.
"""

from celery import Celery

from booking_engine.config import settings

# Create Celery app
celery_app = Celery(
    "booking_engine_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["booking_engine.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Ho_Chi_Minh",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=240,
    task_soft_time_limit=180,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Retry settings
    task_default_retry_delay=30,
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Expire lapsed holds and advance schedules every 5 minutes by default
        "sweep-expired-bookings": {
            "task": "booking_engine.tasks.sweep_expired_bookings",
            "schedule": float(settings.sweep_interval_seconds),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
