"""Booking engine exceptions.

Every error carries the HTTP status the calling web layer should answer with.
"""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base engine exception."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Malformed input: card fields, seat list, passengers, pricing options."""

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(AppException):
    """Seat already held, or a concurrent state change won the race."""

    def __init__(self, detail: str = "The resource was modified concurrently", seats: list[int] | None = None) -> None:
        self.seats = seats or []
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class NotLockedError(ConflictError):
    """Seats are not held by the caller's session."""

    def __init__(self, seats: list[int]) -> None:
        super().__init__(
            detail=f"Seats {', '.join(str(s) for s in seats)} are not locked by this session",
            seats=seats,
        )


class ExpiredError(AppException):
    """Hold or payment session is past its time to live."""

    def __init__(self, detail: str = "This hold has expired") -> None:
        super().__init__(status_code=status.HTTP_410_GONE, detail=detail)


class InvalidTransitionError(AppException):
    """Requested state change is not allowed from the current state."""

    def __init__(self, detail: str = "This operation is not allowed for the current status") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class PaymentError(AppException):
    """Payment processing error."""

    def __init__(self, detail: str = "Payment processing failed") -> None:
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)


class GatewayDeclinedError(PaymentError):
    """The gateway declined the charge. The hold stays retryable."""

    def __init__(self, reason: str = "Payment declined") -> None:
        self.reason = reason
        super().__init__(detail=reason)


class NotCancellableError(AppException):
    """Trip has already departed."""

    def __init__(self, detail: str = "The trip has already departed and cannot be cancelled") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ExternalServiceError(AppException):
    """External service error."""

    def __init__(self, service: str, detail: str | None = None) -> None:
        message = f"External service '{service}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)
