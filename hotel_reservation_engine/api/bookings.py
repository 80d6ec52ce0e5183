"""
FastAPI routes for room bookings.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import get_db
from ..models.booking import BookingStatus
from ..schemas.booking import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingListResponse,
    BookingResponse,
    BookingStatusHistoryResponse,
    CancelBookingResponse,
    CreateBookingResponse,
)
from ..services.notification_service import BookingNotifier
from ..services.reservation_service import ReservationService
from ..utils.dependencies import (
    CurrentUser,
    get_current_admin_user,
    get_current_user,
    get_notifier,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])
settings = get_settings()


@router.post("/", response_model=CreateBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier)
):
    """
    Reserve a room for a date range.

    The booking is created pending and held for
    ``booking_hold_timeout_minutes`` while the guest pays.
    """
    reservation_service = ReservationService(db, notifier=notifier)
    booking = await reservation_service.create_reservation(
        user_id=current_user.user_id,
        room_id=request.room_id,
        check_in=request.check_in,
        check_out=request.check_out,
        number_of_guests=request.number_of_guests,
        special_requests=request.special_requests,
        guest_email=request.guest_email or current_user.email
    )

    return CreateBookingResponse(
        booking=BookingResponse.model_validate(booking),
        message="Booking created successfully. Please complete payment within the hold period.",
        hold_expires_in_minutes=settings.booking_hold_timeout_minutes
    )


@router.get("/", response_model=BookingListResponse)
async def list_my_bookings(
    status_filter: Optional[List[BookingStatus]] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's bookings, newest first."""
    reservation_service = ReservationService(db)
    bookings = await reservation_service.get_user_bookings(
        current_user.user_id,
        status_filter=status_filter,
        limit=limit,
        offset=offset
    )

    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        limit=limit,
        offset=offset
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one booking. Admins may read any booking."""
    reservation_service = ReservationService(db)
    booking = await reservation_service.get_booking_for_user(
        booking_id,
        None if current_user.is_admin else current_user.user_id
    )
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/history", response_model=List[BookingStatusHistoryResponse])
async def get_booking_history(
    booking_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get the status history of a booking, oldest first."""
    reservation_service = ReservationService(db)
    history = await reservation_service.get_booking_history(
        booking_id,
        None if current_user.is_admin else current_user.user_id
    )
    return [BookingStatusHistoryResponse.model_validate(h) for h in history]


@router.post("/{booking_id}/cancel", response_model=CancelBookingResponse)
async def cancel_booking(
    booking_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier)
):
    """
    Cancel one of the caller's bookings.

    Cancelling a booking that is already cancelled or completed is not an
    error; the response reports ``cancelled: false``.
    """
    reservation_service = ReservationService(db, notifier=notifier)
    cancelled = await reservation_service.cancel_reservation(booking_id, current_user.user_id)

    return CancelBookingResponse(
        booking_id=booking_id,
        cancelled=cancelled,
        message="Booking cancelled successfully" if cancelled else "Booking was already cancelled or completed"
    )


@router.post("/{booking_id}/admin-cancel", response_model=CancelBookingResponse)
async def admin_cancel_booking(
    booking_id: int,
    request: BookingCancelRequest,
    admin_user: CurrentUser = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier)
):
    """Cancel any booking (admin only)."""
    reservation_service = ReservationService(db, notifier=notifier)
    cancelled = await reservation_service.cancel_reservation_as_admin(
        booking_id,
        admin_user.user_id,
        reason=request.reason
    )

    return CancelBookingResponse(
        booking_id=booking_id,
        cancelled=cancelled,
        message="Booking cancelled successfully" if cancelled else "Booking was already cancelled or completed"
    )


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: int,
    admin_user: CurrentUser = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier)
):
    """Mark a stay as completed (admin only)."""
    reservation_service = ReservationService(db, notifier=notifier)
    booking = await reservation_service.complete_stay(booking_id, admin_user.user_id)
    return BookingResponse.model_validate(booking)
