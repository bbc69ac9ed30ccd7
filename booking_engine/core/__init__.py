"""Core utilities: errors and time sources."""

from booking_engine.core.clock import Clock, ManualClock, SystemClock
from booking_engine.core.exceptions import (
    AppException,
    ConflictError,
    ExpiredError,
    ExternalServiceError,
    GatewayDeclinedError,
    InvalidTransitionError,
    NotCancellableError,
    NotFoundError,
    NotLockedError,
    PaymentError,
    ValidationError,
)

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "AppException",
    "ConflictError",
    "ExpiredError",
    "ExternalServiceError",
    "GatewayDeclinedError",
    "InvalidTransitionError",
    "NotCancellableError",
    "NotFoundError",
    "NotLockedError",
    "PaymentError",
    "ValidationError",
]
