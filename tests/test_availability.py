from datetime import date, timedelta

import pytest

from hotel_reservation_engine.services.availability_service import (
    AvailabilityService,
    ranges_overlap,
    validate_stay_range,
)
from hotel_reservation_engine.services.reservation_service import ReservationService
from hotel_reservation_engine.utils.exceptions import ValidationError


def days(n):
    return date(2031, 3, 1) + timedelta(days=n)


@pytest.mark.parametrize("a, b, expected", [
    ((0, 3), (1, 2), True),    # contained
    ((0, 3), (2, 5), True),    # tail overlap
    ((2, 5), (0, 3), True),    # head overlap
    ((0, 3), (3, 5), False),   # back-to-back
    ((3, 5), (0, 3), False),
    ((0, 3), (4, 6), False),   # disjoint
    ((0, 10), (0, 10), True),  # identical
])
def test_ranges_overlap_is_half_open(a, b, expected):
    assert ranges_overlap(days(a[0]), days(a[1]), days(b[0]), days(b[1])) is expected
    assert ranges_overlap(days(b[0]), days(b[1]), days(a[0]), days(a[1])) is expected


def test_validate_stay_range_rejects_bad_input():
    with pytest.raises(ValidationError) as exc:
        validate_stay_range(0, days(0), days(1))
    assert exc.value.details == {"field": "room_id"}

    with pytest.raises(ValidationError):
        validate_stay_range(1, days(2), days(2))

    with pytest.raises(ValidationError):
        validate_stay_range(1, days(3), days(2))


async def test_overlapping_bookings_found_and_back_to_back_ignored(session, rooms, notifier, stay):
    reservations = ReservationService(session, notifier=notifier)
    check_in, check_out = stay(0, 3)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    availability = AvailabilityService(session)

    overlapping = await availability.get_overlapping_bookings(
        rooms["101"], check_in + timedelta(days=2), check_out + timedelta(days=2)
    )
    assert [b.id for b in overlapping] == [booking.id]

    assert await availability.is_available(rooms["101"], check_out, check_out + timedelta(days=2))
    assert await availability.is_available(rooms["101"], check_in - timedelta(days=2), check_in)
    assert not await availability.is_available(rooms["101"], check_in, check_out)

    # Other rooms are unaffected
    assert await availability.is_available(rooms["102"], check_in, check_out)


async def test_excluded_booking_does_not_conflict_with_itself(session, rooms, notifier, stay):
    reservations = ReservationService(session, notifier=notifier)
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    availability = AvailabilityService(session)
    assert await availability.is_available(
        rooms["101"], check_in, check_out, exclude_booking_id=booking.id
    )


async def test_cancelled_bookings_release_the_room(session, rooms, notifier, stay):
    reservations = ReservationService(session, notifier=notifier)
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)
    await reservations.cancel_reservation(booking.id, "guest-1")

    availability = AvailabilityService(session)
    assert await availability.get_overlapping_bookings(rooms["101"], check_in, check_out) == []
    assert await availability.is_available(rooms["101"], check_in, check_out)


async def test_room_availability_honours_admin_flag_and_missing_rooms(session, rooms, stay):
    availability = AvailabilityService(session)
    check_in, check_out = stay(0, 1)

    assert await availability.is_room_available(rooms["101"], check_in, check_out)
    assert not await availability.is_room_available(rooms["301"], check_in, check_out)
    assert not await availability.is_room_available(9999, check_in, check_out)


async def test_available_rooms_skip_overlaps_and_closed_rooms(session, rooms, notifier, stay):
    reservations = ReservationService(session, notifier=notifier)
    check_in, check_out = stay(0, 3)
    await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    availability = AvailabilityService(session)

    free = await availability.get_available_rooms(check_in + timedelta(days=1), check_out + timedelta(days=1))
    assert [r.room_number for r in free] == ["102", "201"]

    # Back-to-back stays on either side keep room 101 on offer
    after = await availability.get_available_rooms(check_out, check_out + timedelta(days=2))
    before = await availability.get_available_rooms(check_in - timedelta(days=2), check_in)
    assert [r.room_number for r in after] == ["101", "102", "201"]
    assert [r.room_number for r in before] == ["101", "102", "201"]
    assert after[0].room_type.name == "Standard"


async def test_available_rooms_filter_by_type_and_capacity(session, rooms, load_room, stay):
    suite_type_id = (await load_room(rooms["201"])).room_type_id
    availability = AvailabilityService(session)
    check_in, check_out = stay(0, 2)

    by_type = await availability.get_available_rooms(check_in, check_out, room_type_id=suite_type_id)
    assert [r.room_number for r in by_type] == ["201"]

    roomy = await availability.get_available_rooms(check_in, check_out, min_capacity=3)
    assert [r.room_number for r in roomy] == ["201"]

    assert await availability.get_available_rooms(check_in, check_out, min_capacity=5) == []


async def test_available_room_types_need_one_free_room(session, rooms, notifier, stay):
    reservations = ReservationService(session, notifier=notifier)
    availability = AvailabilityService(session)
    check_in, check_out = stay(0, 2)

    types = await availability.get_available_room_types(check_in, check_out)
    assert [t.name for t in types] == ["Standard", "Suite"]

    types = await availability.get_available_room_types(check_in, check_out, min_capacity=3)
    assert [t.name for t in types] == ["Suite"]

    booking = await reservations.create_reservation("guest-1", rooms["201"], check_in, check_out, 2)
    types = await availability.get_available_room_types(check_in, check_out)
    assert [t.name for t in types] == ["Standard"]

    await reservations.cancel_reservation(booking.id, "guest-1")
    types = await availability.get_available_room_types(check_in, check_out)
    assert [t.name for t in types] == ["Standard", "Suite"]


@pytest.mark.parametrize("kwargs, field", [
    ({"room_type_id": 0}, "room_type_id"),
    ({"min_capacity": 0}, "min_capacity"),
    ({"min_capacity": -2}, "min_capacity"),
])
async def test_available_rooms_reject_non_positive_filters(session, stay, kwargs, field):
    availability = AvailabilityService(session)
    check_in, check_out = stay(0, 1)

    with pytest.raises(ValidationError) as exc:
        await availability.get_available_rooms(check_in, check_out, **kwargs)
    assert exc.value.details == {"field": field}


async def test_available_queries_reject_empty_ranges(session, stay):
    availability = AvailabilityService(session)
    check_in, _ = stay(0, 1)

    with pytest.raises(ValidationError):
        await availability.get_available_rooms(check_in, check_in)

    with pytest.raises(ValidationError):
        await availability.get_available_room_types(check_in, check_in - timedelta(days=1))
