"""
Error hierarchy shared by services, middleware and workers.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Business logic errors
    ROOM_NOT_AVAILABLE = "ROOM_NOT_AVAILABLE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    OPTIMISTIC_LOCK_FAILURE = "OPTIMISTIC_LOCK_FAILURE"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    PAYMENT_SERVICE_ERROR = "PAYMENT_SERVICE_ERROR"
    EMAIL_SERVICE_ERROR = "EMAIL_SERVICE_ERROR"


class ReservationError(Exception):
    """Root of every error the engine raises on purpose."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Body of the ``error`` member in API error responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(ReservationError):
    """Exception raised for malformed or out-of-range input."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"field": field} if field else None,
            **kwargs
        )
        self.field = field


class NotFoundError(ReservationError):
    """A referenced resource does not exist."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class RoomNotFoundError(NotFoundError):

    def __init__(self, room_id: int, **kwargs):
        super().__init__(
            f"Room {room_id} not found",
            resource_type="room",
            resource_id=str(room_id),
            suggestions=["Check the room ID", "Browse available rooms"],
            **kwargs
        )


class BookingNotFoundError(NotFoundError):

    def __init__(self, booking_id: int, **kwargs):
        super().__init__(
            f"Booking {booking_id} not found",
            resource_type="booking",
            resource_id=str(booking_id),
            suggestions=["Check the booking ID", "View your booking history"],
            **kwargs
        )


class BookingAccessDeniedError(NotFoundError):
    """
    Raised when a booking does not exist or is not owned by the caller.

    Both cases share one variant and one message so callers cannot
    probe which booking ids exist.
    """

    def __init__(self, booking_id: int, **kwargs):
        super().__init__(
            f"Booking {booking_id} not found",
            resource_type="booking",
            resource_id=str(booking_id),
            **kwargs
        )
        self.booking_id = booking_id


class AuthenticationError(ReservationError):
    """Missing, expired or malformed bearer token."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.UNAUTHORIZED,
            suggestions=["Check your credentials", "Login again"],
            **kwargs
        )


class AuthorizationError(ReservationError):

    def __init__(self, message: str = "Access denied", required_permission: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_permission": required_permission} if required_permission else None,
            suggestions=["Contact an administrator for access"],
            **kwargs
        )


class BusinessLogicError(ReservationError):
    """Base exception for business rule violations."""
    pass


class RoomNotAvailableError(BusinessLogicError):
    """Exception raised when a room cannot be reserved for the requested dates."""

    def __init__(self, room_id: int, check_in: Any, check_out: Any, **kwargs):
        super().__init__(
            f"Room {room_id} is not available from {check_in} to {check_out}",
            error_code=ErrorCode.ROOM_NOT_AVAILABLE,
            details={"room_id": room_id, "check_in": str(check_in), "check_out": str(check_out)},
            suggestions=["Choose different dates", "Choose a different room"],
            **kwargs
        )


class CapacityExceededError(BusinessLogicError):
    """Exception raised when the party is larger than the room allows."""

    def __init__(self, requested: int, max_occupancy: int, room_id: Optional[int] = None, **kwargs):
        super().__init__(
            f"Number of guests {requested} exceeds room capacity {max_occupancy}",
            error_code=ErrorCode.CAPACITY_EXCEEDED,
            details={"requested": requested, "max_occupancy": max_occupancy, "room_id": room_id},
            suggestions=["Book a larger room type", "Split the party across rooms"],
            **kwargs
        )


class InvalidTransitionError(BusinessLogicError):
    """Exception raised when a booking status change is not allowed."""

    def __init__(self, booking_id: Optional[int], current_status: str, requested_status: str, **kwargs):
        super().__init__(
            f"Booking {booking_id} cannot move from {current_status} to {requested_status}",
            error_code=ErrorCode.INVALID_TRANSITION,
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
            **kwargs
        )


class ConcurrencyError(ReservationError):
    """Another transaction got there first; safe to retry."""

    def __init__(self, message: str, retry_after: int = 1, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.CONCURRENCY_CONFLICT)
        super().__init__(
            message,
            retry_after=retry_after,
            suggestions=["Please try again", "Reload and retry"],
            **kwargs
        )


class OptimisticLockError(ConcurrencyError):
    """Exception raised when a version-checked write finds a stale version."""

    def __init__(self, resource_type: str, resource_id: Any, **kwargs):
        super().__init__(
            f"{resource_type} {resource_id} was modified by another transaction",
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
            error_code=ErrorCode.OPTIMISTIC_LOCK_FAILURE,
            **kwargs
        )


class TransactionTimeoutError(ReservationError):
    """Exception raised when an operation overruns its caller-supplied deadline."""

    def __init__(self, operation: str, timeout: float, **kwargs):
        super().__init__(
            f"{operation} did not finish within {timeout}s and was rolled back",
            error_code=ErrorCode.TRANSACTION_TIMEOUT,
            details={"operation": operation, "timeout": timeout},
            suggestions=["Try again"],
            **kwargs
        )


class ExternalServiceError(ReservationError):
    """A third-party dependency failed or is unreachable."""

    def __init__(self, service_name: str, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.EXTERNAL_SERVICE_ERROR)
        details = {"service_name": service_name, "status_code": status_code}
        details.update(kwargs.pop("details", None) or {})
        super().__init__(
            f"{service_name} service error: {message}",
            details=details,
            suggestions=["Try again later", "Contact support if problem persists"],
            **kwargs
        )
        self.service_name = service_name


class PaymentServiceError(ExternalServiceError):

    def __init__(self, message: str, **kwargs):
        super().__init__(
            "payment",
            message,
            error_code=ErrorCode.PAYMENT_SERVICE_ERROR,
            **kwargs
        )


class EmailServiceError(ExternalServiceError):

    def __init__(self, message: str, **kwargs):
        super().__init__(
            "email",
            message,
            error_code=ErrorCode.EMAIL_SERVICE_ERROR,
            **kwargs
        )
