"""
Database models for the Hotel Reservation Engine.
"""

from .base import Base
from .room import Room, RoomType
from .booking import Booking, BookingStatus
from .booking_payment import BookingPayment, PaymentStatus
from .booking_status_history import BookingStatusHistory, SYSTEM_ACTOR

__all__ = [
    "Base",
    "Room",
    "RoomType",
    "Booking",
    "BookingStatus",
    "BookingPayment",
    "PaymentStatus",
    "BookingStatusHistory",
    "SYSTEM_ACTOR",
]
