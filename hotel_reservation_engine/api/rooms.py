"""
FastAPI routes for room availability and pricing.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import get_db
from ..schemas.booking import BookingResponse
from ..schemas.room import (
    AvailableRoomTypesResponse,
    AvailableRoomsResponse,
    OverlappingBookingsResponse,
    RoomAvailabilityResponse,
    RoomQuoteResponse,
    RoomSummary,
    RoomTypeSummary,
)
from ..services.reservation_service import ReservationService
from ..utils.dependencies import CurrentUser, get_current_admin_user

router = APIRouter(prefix="/rooms", tags=["rooms"])
settings = get_settings()


@router.get("/available", response_model=AvailableRoomsResponse)
async def list_available_rooms(
    check_in: date = Query(...),
    check_out: date = Query(...),
    room_type_id: Optional[int] = Query(None),
    min_capacity: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """List open rooms with no booking overlapping the stay."""
    reservation_service = ReservationService(db)
    rooms = await reservation_service.get_available_rooms(
        check_in, check_out, room_type_id, min_capacity
    )

    return AvailableRoomsResponse(
        check_in=check_in,
        check_out=check_out,
        rooms=[RoomSummary.model_validate(r) for r in rooms]
    )


@router.get("/available-types", response_model=AvailableRoomTypesResponse)
async def list_available_room_types(
    check_in: date = Query(...),
    check_out: date = Query(...),
    min_capacity: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """List room types that still have a room free for the stay."""
    reservation_service = ReservationService(db)
    room_types = await reservation_service.get_available_room_types(check_in, check_out, min_capacity)

    return AvailableRoomTypesResponse(
        check_in=check_in,
        check_out=check_out,
        room_types=[RoomTypeSummary.model_validate(t) for t in room_types]
    )


@router.get("/{room_id}/availability", response_model=RoomAvailabilityResponse)
async def get_room_availability(
    room_id: int,
    check_in: date = Query(...),
    check_out: date = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Check whether a room can be booked for a stay."""
    reservation_service = ReservationService(db)
    available = await reservation_service.is_room_available(room_id, check_in, check_out)

    return RoomAvailabilityResponse(
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
        available=available
    )


@router.get("/{room_id}/quote", response_model=RoomQuoteResponse)
async def get_room_quote(
    room_id: int,
    check_in: date = Query(...),
    check_out: date = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Price a stay without reserving it."""
    reservation_service = ReservationService(db)
    total_amount = await reservation_service.calculate_total_amount(room_id, check_in, check_out)

    return RoomQuoteResponse(
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
        nights=(check_out - check_in).days,
        total_amount=total_amount,
        currency=settings.default_currency
    )


@router.get("/{room_id}/overlapping-bookings", response_model=OverlappingBookingsResponse)
async def get_overlapping_bookings(
    room_id: int,
    check_in: date = Query(...),
    check_out: date = Query(...),
    exclude_booking_id: Optional[int] = Query(None),
    admin_user: CurrentUser = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """List active bookings that conflict with a stay (admin only)."""
    reservation_service = ReservationService(db)
    bookings = await reservation_service.get_overlapping_bookings(
        room_id, check_in, check_out, exclude_booking_id
    )

    return OverlappingBookingsResponse(
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
        bookings=[BookingResponse.model_validate(b) for b in bookings]
    )
