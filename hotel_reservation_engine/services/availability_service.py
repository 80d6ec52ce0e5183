"""
Availability service answering whether a room is free for a date range.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import Select, and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.booking import Booking, BookingStatus
from ..models.room import Room, RoomType
from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """
    Half-open interval overlap test.

    [a_start, a_end) and [b_start, b_end) overlap iff each starts before
    the other ends. A stay ending on day X and one starting on day X do
    not overlap.
    """
    return a_start < b_end and b_start < a_end


def validate_date_range(check_in: date, check_out: date) -> None:
    if check_in >= check_out:
        raise ValidationError("Check-in date must be before check-out date", field="check_out")


def validate_stay_range(room_id: int, check_in: date, check_out: date) -> None:
    """Reject a non-positive room id or an empty/inverted date range."""
    if room_id is None or room_id <= 0:
        raise ValidationError("Room ID must be a positive integer", field="room_id")

    validate_date_range(check_in, check_out)


def _validate_positive(value: Optional[int], field: str, label: str) -> None:
    if value is not None and value <= 0:
        raise ValidationError(f"{label} must be greater than zero", field=field)


class AvailabilityService:
    """Read-only availability queries over rooms and their active bookings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_overlapping_bookings(
        self,
        room_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None
    ) -> List[Booking]:
        """
        Get non-cancelled bookings of a room that overlap the given stay.

        Args:
            room_id: ID of the room
            check_in: First night of the stay
            check_out: Departure day (exclusive)
            exclude_booking_id: Booking to leave out, e.g. the one being modified

        Returns:
            Overlapping bookings ordered by check-in date
        """
        validate_stay_range(room_id, check_in, check_out)

        conditions = [
            Booking.room_id == room_id,
            Booking.status != BookingStatus.CANCELLED,
            Booking.check_in < check_out,
            check_in < Booking.check_out,
        ]
        if exclude_booking_id is not None:
            conditions.append(Booking.id != exclude_booking_id)

        query = (
            select(Booking)
            .where(and_(*conditions))
            .order_by(Booking.check_in, Booking.id)
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def is_available(
        self,
        room_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None
    ) -> bool:
        """Check that no active booking of the room overlaps the stay."""
        overlapping = await self.get_overlapping_bookings(
            room_id, check_in, check_out, exclude_booking_id
        )

        if overlapping:
            logger.debug(
                f"Room {room_id} has {len(overlapping)} overlapping booking(s) "
                f"for {check_in} - {check_out}"
            )
            return False

        return True

    async def is_room_available(self, room_id: int, check_in: date, check_out: date) -> bool:
        """
        Check whether a room can be offered for the stay.

        False when the room does not exist, is administratively closed, or
        already has an overlapping booking.
        """
        validate_stay_range(room_id, check_in, check_out)

        room = await self.session.get(Room, room_id)
        if room is None or not room.is_available:
            return False

        return await self.is_available(room_id, check_in, check_out)

    async def get_available_rooms(
        self,
        check_in: date,
        check_out: date,
        room_type_id: Optional[int] = None,
        min_capacity: Optional[int] = None
    ) -> List[Room]:
        """
        List open rooms with no active booking overlapping the stay.

        Args:
            check_in: First night of the stay
            check_out: Departure day (exclusive)
            room_type_id: Only rooms of this type
            min_capacity: Only room types sleeping at least this many guests

        Returns:
            Rooms with their room type loaded, ordered by room number

        Raises:
            ValidationError: On an empty or inverted range, or a non-positive filter
        """
        validate_date_range(check_in, check_out)
        _validate_positive(room_type_id, "room_type_id", "Room type ID")
        _validate_positive(min_capacity, "min_capacity", "Minimum capacity")

        query = (
            self._open_rooms(Room, check_in, check_out, min_capacity)
            .options(selectinload(Room.room_type))
            .order_by(Room.room_number)
        )
        if room_type_id is not None:
            query = query.where(Room.room_type_id == room_type_id)

        result = await self.session.execute(query)
        rooms = list(result.scalars().all())

        logger.debug(f"{len(rooms)} room(s) free for {check_in} - {check_out}")
        return rooms

    async def get_available_room_types(
        self,
        check_in: date,
        check_out: date,
        min_capacity: Optional[int] = None
    ) -> List[RoomType]:
        """Room types with at least one room free for the whole stay."""
        validate_date_range(check_in, check_out)
        _validate_positive(min_capacity, "min_capacity", "Minimum capacity")

        free_type_ids = self._open_rooms(Room.room_type_id, check_in, check_out, min_capacity)

        result = await self.session.execute(
            select(RoomType)
            .where(RoomType.id.in_(free_type_ids))
            .order_by(RoomType.price_per_night, RoomType.id)
        )
        return list(result.scalars().all())

    def _open_rooms(self, entity, check_in: date, check_out: date, min_capacity: Optional[int]) -> Select:
        """Rooms that are not closed and have no non-cancelled booking overlapping the stay."""
        conflicting = exists().where(
            Booking.room_id == Room.id,
            Booking.status != BookingStatus.CANCELLED,
            Booking.check_in < check_out,
            check_in < Booking.check_out,
        )

        query = (
            select(entity)
            .select_from(Room)
            .join(Room.room_type)
            .where(Room.is_available.is_(True), ~conflicting)
        )
        if min_capacity is not None:
            query = query.where(RoomType.max_occupancy >= min_capacity)
        return query
