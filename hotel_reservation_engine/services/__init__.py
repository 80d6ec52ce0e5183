"""Business logic services for the Hotel Reservation Engine."""

from .availability_service import AvailabilityService
from .booking_state_machine import BookingStateMachine
from .reservation_service import ReservationService
from .payment_service import PaymentService, PaymentConfirmationOutcome
from .notification_service import BookingNotifier, NotificationKind, NotificationService

__all__ = [
    "AvailabilityService",
    "BookingStateMachine",
    "ReservationService",
    "PaymentService",
    "PaymentConfirmationOutcome",
    "BookingNotifier",
    "NotificationKind",
    "NotificationService",
]
