"""
Reservation service: creates, prices and cancels room bookings under concurrency.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import get_settings
from ..database import unit_of_work
from ..models.booking import Booking, BookingStatus
from ..models.booking_payment import BookingPayment, PaymentStatus
from ..models.booking_status_history import BookingStatusHistory, SYSTEM_ACTOR
from ..models.room import Room, RoomType
from ..utils.exceptions import (
    BookingAccessDeniedError,
    BookingNotFoundError,
    CapacityExceededError,
    ConcurrencyError,
    InvalidTransitionError,
    OptimisticLockError,
    RoomNotAvailableError,
    RoomNotFoundError,
    TransactionTimeoutError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_on_concurrency_error
from .availability_service import AvailabilityService, validate_stay_range
from .booking_state_machine import BookingStateMachine
from .notification_service import BookingNotifier, NotificationKind

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def price_stay(price_per_night: Decimal, check_in: date, check_out: date) -> Decimal:
    """Whole nights times the nightly rate. Partial days are never billed."""
    nights = (check_out - check_in).days
    return (Decimal(price_per_night) * nights).quantize(CENTS)


class ReservationService:
    """Service for managing room reservations with concurrency control."""

    def __init__(self, session: AsyncSession, notifier: Optional[BookingNotifier] = None):
        self.session = session
        self.settings = get_settings()
        self.availability = AvailabilityService(session)
        self.state_machine = BookingStateMachine(session)
        self.notifier = notifier if notifier is not None else BookingNotifier()

    async def create_reservation(
        self,
        user_id: str,
        room_id: int,
        check_in: date,
        check_out: date,
        number_of_guests: int,
        special_requests: Optional[str] = None,
        guest_email: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Booking:
        """
        Create a pending booking for one room and date range.

        Args:
            user_id: Opaque id of the guest making the booking
            room_id: ID of the room to book
            check_in: First night of the stay
            check_out: Departure day (exclusive)
            number_of_guests: Party size
            special_requests: Optional free-text requests
            guest_email: Optional address for booking notifications
            timeout: Deadline in seconds; defaults to ``reservation_timeout_seconds``

        Returns:
            The persisted booking with its assigned id

        Raises:
            ValidationError: Malformed input, raised before any transaction opens
            RoomNotFoundError: When the room does not exist
            RoomNotAvailableError: When the room is closed or already booked
            CapacityExceededError: When the party exceeds the room's occupancy
            TransactionTimeoutError: When the deadline passes; nothing is written
        """
        logger.info(
            f"Creating reservation for user {user_id}, room {room_id}, "
            f"{check_in} - {check_out}, guests {number_of_guests}"
        )

        self._validate_reservation_request(user_id, room_id, check_in, check_out, number_of_guests)

        deadline = timeout if timeout is not None else self.settings.reservation_timeout_seconds
        attempt = self._create_reservation_attempt(
            user_id, room_id, check_in, check_out,
            number_of_guests, special_requests, guest_email
        )

        try:
            if deadline:
                booking = await asyncio.wait_for(attempt, timeout=deadline)
            else:
                booking = await attempt
        except asyncio.TimeoutError:
            await self.session.rollback()
            logger.error(f"Reservation for room {room_id} exceeded its {deadline}s deadline")
            raise TransactionTimeoutError("create_reservation", deadline)

        logger.info(f"Booking {booking.id} created for room {room_id}")
        log_business_event(
            "booking_created",
            {"booking_id": booking.id, "room_id": room_id, "total_amount": str(booking.total_amount)},
            user_id=user_id
        )
        self._notify(NotificationKind.BOOKING_CREATED, booking.id)
        return booking

    async def cancel_reservation(self, booking_id: int, user_id: str) -> bool:
        """
        Cancel a booking on behalf of its owner.

        Returns:
            True if the booking was cancelled, False if it was already
            cancelled or completed

        Raises:
            BookingAccessDeniedError: When the booking is missing or owned by someone else
        """
        logger.info(f"User {user_id} cancelling booking {booking_id}")

        cancelled = await self._cancel(
            booking_id,
            actor=user_id,
            notes="Booking cancelled by the user",
            owner_id=user_id
        )

        if cancelled:
            log_business_event("booking_cancelled", {"booking_id": booking_id}, user_id=user_id)
            self._notify(NotificationKind.BOOKING_CANCELLED, booking_id)

        return cancelled

    async def cancel_reservation_as_admin(
        self,
        booking_id: int,
        admin_user_id: str,
        reason: Optional[str] = None
    ) -> bool:
        """Cancel any booking. Same outcomes as ``cancel_reservation`` without the ownership check."""
        logger.info(f"Admin {admin_user_id} cancelling booking {booking_id}")

        notes = "Booking cancelled by an administrator"
        if reason:
            notes += f" - Reason: {reason}"

        cancelled = await self._cancel(booking_id, actor=admin_user_id, notes=notes)

        if cancelled:
            self._notify(NotificationKind.BOOKING_CANCELLED, booking_id)

        return cancelled

    async def calculate_total_amount(self, room_id: int, check_in: date, check_out: date) -> Decimal:
        """
        Price a stay without booking it.

        Raises:
            ValidationError: On a bad room id or date range
            RoomNotFoundError: When the room does not exist
        """
        validate_stay_range(room_id, check_in, check_out)

        room = await self._get_room(room_id)
        return price_stay(room.room_type.price_per_night, check_in, check_out)

    async def complete_stay(self, booking_id: int, changed_by_user_id: str = SYSTEM_ACTOR) -> Booking:
        """
        Mark a pending or paid booking as completed.

        Raises:
            BookingNotFoundError: When the booking does not exist
            InvalidTransitionError: When the booking is already cancelled or completed
        """
        async with unit_of_work(self.session):
            booking = await self._get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)

            await self.state_machine.transition(
                booking,
                BookingStatus.COMPLETED,
                changed_by_user_id,
                "Stay completed"
            )

        self._notify(NotificationKind.BOOKING_COMPLETED, booking_id)
        return booking

    async def is_room_available(self, room_id: int, check_in: date, check_out: date) -> bool:
        return await self.availability.is_room_available(room_id, check_in, check_out)

    async def get_overlapping_bookings(
        self,
        room_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None
    ) -> List[Booking]:
        return await self.availability.get_overlapping_bookings(
            room_id, check_in, check_out, exclude_booking_id
        )

    async def get_available_rooms(
        self,
        check_in: date,
        check_out: date,
        room_type_id: Optional[int] = None,
        min_capacity: Optional[int] = None
    ) -> List[Room]:
        return await self.availability.get_available_rooms(
            check_in, check_out, room_type_id, min_capacity
        )

    async def get_available_room_types(
        self,
        check_in: date,
        check_out: date,
        min_capacity: Optional[int] = None
    ) -> List[RoomType]:
        return await self.availability.get_available_room_types(check_in, check_out, min_capacity)

    async def get_booking_for_user(self, booking_id: int, user_id: Optional[str]) -> Booking:
        """
        Get a booking the caller may see. ``user_id=None`` skips the ownership check.

        Raises:
            BookingAccessDeniedError: When the booking is missing or not owned
        """
        booking = await self._get_booking(booking_id, with_room=True)

        if booking is None or (user_id is not None and booking.user_id != user_id):
            raise BookingAccessDeniedError(booking_id)

        return booking

    async def get_user_bookings(
        self,
        user_id: str,
        status_filter: Optional[List[BookingStatus]] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Booking]:
        """
        Get bookings for a specific user, newest first.

        Args:
            user_id: ID of the user
            status_filter: Optional list of statuses to filter by
            limit: Maximum number of bookings to return
            offset: Number of bookings to skip
        """
        query = (
            select(Booking)
            .options(selectinload(Booking.room).selectinload(Room.room_type))
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .limit(limit)
            .offset(offset)
        )

        if status_filter:
            query = query.where(Booking.status.in_(status_filter))

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_booking_history(
        self,
        booking_id: int,
        user_id: Optional[str] = None
    ) -> List[BookingStatusHistory]:
        """Get the status history of a booking in the order it was written."""
        await self.get_booking_for_user(booking_id, user_id)

        result = await self.session.execute(
            select(BookingStatusHistory)
            .where(BookingStatusHistory.booking_id == booking_id)
            .order_by(BookingStatusHistory.id)
        )
        return list(result.scalars().all())

    async def expire_unpaid_reservations(self, now: Optional[datetime] = None) -> int:
        """
        Cancel pending bookings whose payment hold has run out.

        Returns:
            Number of bookings cancelled
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=self.settings.booking_hold_timeout_minutes)

        result = await self.session.execute(
            select(Booking.id).where(
                and_(
                    Booking.status == BookingStatus.PENDING,
                    Booking.created_at < cutoff
                )
            )
        )
        booking_ids = list(result.scalars().all())

        if not booking_ids:
            logger.info("No unpaid reservations past their hold")
            return 0

        expired = 0
        for booking_id in booking_ids:
            try:
                async with unit_of_work(self.session):
                    booking = await self._get_booking(booking_id)
                    if booking is None or booking.status != BookingStatus.PENDING:
                        continue

                    await self.state_machine.transition(
                        booking,
                        BookingStatus.CANCELLED,
                        SYSTEM_ACTOR,
                        "Payment hold expired"
                    )
            except (ConcurrencyError, InvalidTransitionError) as e:
                logger.warning(f"Skipping expiry of booking {booking_id}: {e}")
                continue

            expired += 1
            self._notify(NotificationKind.BOOKING_CANCELLED, booking_id)

        logger.info(f"Expired {expired} unpaid reservation(s)")
        return expired

    async def complete_finished_stays(self, today: Optional[date] = None) -> int:
        """
        Complete paid bookings whose departure day has been reached.

        Returns:
            Number of bookings completed
        """
        today = today or datetime.now(timezone.utc).date()

        result = await self.session.execute(
            select(Booking.id).where(
                and_(
                    Booking.status == BookingStatus.PAID,
                    Booking.check_out <= today,
                    # Left alone while a refund is being processed
                    ~exists().where(
                        BookingPayment.booking_id == Booking.id,
                        BookingPayment.payment_status == PaymentStatus.REFUND_PENDING
                    )
                )
            )
        )
        booking_ids = list(result.scalars().all())

        completed = 0
        for booking_id in booking_ids:
            try:
                await self.complete_stay(booking_id)
            except (ConcurrencyError, InvalidTransitionError) as e:
                logger.warning(f"Skipping completion of booking {booking_id}: {e}")
                continue
            completed += 1

        logger.info(f"Completed {completed} finished stay(s)")
        return completed

    # Private helper methods

    def _validate_reservation_request(
        self,
        user_id: str,
        room_id: int,
        check_in: date,
        check_out: date,
        number_of_guests: int
    ) -> None:
        """Input checks that need no database access, in a fixed order."""
        if not user_id or not str(user_id).strip():
            raise ValidationError("User ID is required", field="user_id")

        if room_id is None or room_id <= 0:
            raise ValidationError("Room ID must be a positive integer", field="room_id")

        if number_of_guests is None or number_of_guests <= 0:
            raise ValidationError("Number of guests must be positive", field="number_of_guests")

        if check_in >= check_out:
            raise ValidationError("Check-in date must be before check-out date", field="check_out")

        if check_in < datetime.now(timezone.utc).date():
            raise ValidationError("Check-in date cannot be in the past", field="check_in")

    @retry_on_concurrency_error(max_attempts=5, base_delay=0.05, max_delay=0.5)
    async def _create_reservation_attempt(
        self,
        user_id: str,
        room_id: int,
        check_in: date,
        check_out: date,
        number_of_guests: int,
        special_requests: Optional[str],
        guest_email: Optional[str]
    ) -> Booking:
        """One transactional attempt; a lost room claim raises OptimisticLockError and is retried."""
        async with unit_of_work(self.session):
            room = await self._get_room(room_id)
            seen_version = room.version

            if not room.is_available:
                raise RoomNotAvailableError(room_id, check_in, check_out)

            if not await self.availability.is_available(room_id, check_in, check_out):
                raise RoomNotAvailableError(room_id, check_in, check_out)

            if number_of_guests > room.room_type.max_occupancy:
                raise CapacityExceededError(number_of_guests, room.room_type.max_occupancy, room_id=room_id)

            total_amount = price_stay(room.room_type.price_per_night, check_in, check_out)

            await self._claim_room(room_id, seen_version)

            booking = Booking(
                room_id=room_id,
                user_id=user_id,
                check_in=check_in,
                check_out=check_out,
                number_of_guests=number_of_guests,
                total_amount=total_amount,
                status=BookingStatus.PENDING,
                special_requests=special_requests,
                guest_email=guest_email,
                version=1
            )
            self.session.add(booking)
            await self.session.flush()

            await self.state_machine.record_creation(booking, user_id)

        return booking

    async def _claim_room(self, room_id: int, seen_version: int) -> None:
        """
        Bump the room version as of the read.

        Two transactions that both checked availability against the same
        room version cannot both commit: the second UPDATE matches no row.
        """
        result = await self.session.execute(
            update(Room)
            .where(
                and_(
                    Room.id == room_id,
                    Room.version == seen_version
                )
            )
            .values(version=Room.version + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            raise OptimisticLockError("Room", room_id)

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.05, max_delay=0.5)
    async def _cancel(
        self,
        booking_id: int,
        actor: str,
        notes: str,
        owner_id: Optional[str] = None
    ) -> bool:
        async with unit_of_work(self.session):
            booking = await self._get_booking(booking_id)

            if owner_id is not None:
                if booking is None or booking.user_id != owner_id:
                    raise BookingAccessDeniedError(booking_id)
            elif booking is None:
                raise BookingNotFoundError(booking_id)

            if booking.is_terminal:
                logger.info(f"Booking {booking_id} already {booking.status.value}, nothing to cancel")
                return False

            await self.state_machine.transition(booking, BookingStatus.CANCELLED, actor, notes)

        return True

    async def _get_room(self, room_id: int) -> Room:
        """Get a room with its room type, always read fresh from the database."""
        result = await self.session.execute(
            select(Room)
            .options(selectinload(Room.room_type))
            .where(Room.id == room_id)
            .execution_options(populate_existing=True)
        )
        room = result.scalar_one_or_none()

        if room is None:
            raise RoomNotFoundError(room_id)

        return room

    async def _get_booking(self, booking_id: int, with_room: bool = False) -> Optional[Booking]:
        query = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if with_room:
            query = query.options(selectinload(Booking.room).selectinload(Room.room_type))

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    def _notify(self, kind: NotificationKind, booking_id: int) -> None:
        """Queue a notification. Failures are logged and never undo the committed change."""
        try:
            self.notifier.notify(kind, booking_id)
        except Exception as e:
            logger.warning(f"Failed to queue {kind.value} notification for booking {booking_id}: {e}")
