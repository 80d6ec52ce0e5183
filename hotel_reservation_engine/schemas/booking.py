"""
Pydantic schemas for booking-related API requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus


class BookingCreateRequest(BaseModel):
    """Schema for creating a new booking."""

    room_id: int = Field(..., description="ID of the room to book")
    check_in: date = Field(..., description="First night of the stay")
    check_out: date = Field(..., description="Departure day, not billed")
    number_of_guests: int = Field(..., description="Number of guests staying")
    special_requests: Optional[str] = Field(None, max_length=500, description="Free-text requests")
    guest_email: Optional[str] = Field(None, max_length=255, description="Address for booking notifications")


class BookingCancelRequest(BaseModel):
    """Schema for an administrative cancellation."""

    reason: Optional[str] = Field(None, max_length=500, description="Optional cancellation reason")


class BookingResponse(BaseModel):
    """Schema for booking responses."""

    id: int
    user_id: str
    room_id: int
    check_in: date
    check_out: date
    nights: int
    number_of_guests: int
    total_amount: Decimal
    status: BookingStatus
    special_requests: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    """Schema for booking list responses."""

    bookings: List[BookingResponse]
    limit: int
    offset: int


class BookingStatusHistoryResponse(BaseModel):
    """One entry of a booking's audit trail."""

    id: int
    previous_status: BookingStatus
    new_status: BookingStatus
    changed_by_user_id: str
    changed_at: datetime
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class CreateBookingResponse(BaseModel):
    """Response for successful booking creation."""

    booking: BookingResponse
    message: str = "Booking created successfully"
    hold_expires_in_minutes: int


class CancelBookingResponse(BaseModel):
    """Response for a cancellation request."""

    booking_id: int
    cancelled: bool
    message: str
