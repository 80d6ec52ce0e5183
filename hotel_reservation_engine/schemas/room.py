"""
Pydantic schemas for room availability and pricing queries.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from .booking import BookingResponse


class RoomAvailabilityResponse(BaseModel):
    """Whether a room can be offered for a stay."""

    room_id: int
    check_in: date
    check_out: date
    available: bool


class RoomQuoteResponse(BaseModel):
    """Price of a stay."""

    room_id: int
    check_in: date
    check_out: date
    nights: int
    total_amount: Decimal
    currency: str


class OverlappingBookingsResponse(BaseModel):
    """Bookings that conflict with a stay, for admin diagnostics."""

    room_id: int
    check_in: date
    check_out: date
    bookings: List[BookingResponse]


class RoomTypeSummary(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price_per_night: Decimal
    max_occupancy: int

    model_config = {"from_attributes": True}


class RoomSummary(BaseModel):
    id: int
    room_number: str
    room_type: RoomTypeSummary

    model_config = {"from_attributes": True}


class AvailableRoomsResponse(BaseModel):
    """Rooms free for every night of a stay."""

    check_in: date
    check_out: date
    rooms: List[RoomSummary]


class AvailableRoomTypesResponse(BaseModel):
    """Room types with at least one room free for a stay."""

    check_in: date
    check_out: date
    room_types: List[RoomTypeSummary]
