import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hotel_reservation_engine.config import get_settings
from hotel_reservation_engine.models import BookingStatus, SYSTEM_ACTOR
from hotel_reservation_engine.services.booking_state_machine import BookingStateMachine
from hotel_reservation_engine.services.notification_service import NotificationKind
from hotel_reservation_engine.services.payment_service import PaymentService
from hotel_reservation_engine.services.reservation_service import (
    ReservationService,
    price_stay,
)
from hotel_reservation_engine.utils.exceptions import (
    BookingAccessDeniedError,
    BookingNotFoundError,
    CapacityExceededError,
    InvalidTransitionError,
    RoomNotAvailableError,
    RoomNotFoundError,
    TransactionTimeoutError,
    ValidationError,
)


@pytest.fixture
def reservations(session, notifier):
    return ReservationService(session, notifier=notifier)


def test_price_stay_bills_whole_nights():
    check_in = date(2031, 5, 1)
    assert price_stay(Decimal("100.00"), check_in, check_in + timedelta(days=3)) == Decimal("300.00")
    assert price_stay(Decimal("249.99"), check_in, check_in + timedelta(days=2)) == Decimal("499.98")
    assert price_stay(Decimal("0"), check_in, check_in + timedelta(days=5)) == Decimal("0.00")


async def test_create_reservation_prices_and_records_creation(reservations, rooms, notifier, stay, load_room, db_counts):
    check_in, check_out = stay(0, 3)

    booking = await reservations.create_reservation(
        "guest-1", rooms["101"], check_in, check_out, 2,
        special_requests="Late arrival", guest_email="guest-1@example.com"
    )

    assert booking.id is not None
    assert booking.status == BookingStatus.PENDING
    assert booking.total_amount == Decimal("300.00")
    assert booking.nights == 3
    assert booking.version == 1
    assert booking.special_requests == "Late arrival"

    history = await reservations.get_booking_history(booking.id, "guest-1")
    assert len(history) == 1
    assert history[0].previous_status == BookingStatus.PENDING
    assert history[0].new_status == BookingStatus.PENDING
    assert history[0].changed_by_user_id == "guest-1"
    assert history[0].notes == "Booking created"

    # Every successful reservation bumps the room version
    room = await load_room(rooms["101"])
    assert room.version == 2

    assert notifier.kinds_for(booking.id) == [NotificationKind.BOOKING_CREATED]
    assert (await db_counts())["bookings"] == 1


async def test_back_to_back_stays_are_both_accepted(reservations, rooms, stay):
    first_in, first_out = stay(0, 3)
    second_out = first_out + timedelta(days=2)

    first = await reservations.create_reservation("guest-1", rooms["101"], first_in, first_out, 1)
    second = await reservations.create_reservation("guest-2", rooms["101"], first_out, second_out, 1)

    assert first.check_out == second.check_in
    assert {first.status, second.status} == {BookingStatus.PENDING}


async def test_overlapping_stay_is_rejected(reservations, rooms, stay, db_counts):
    check_in, check_out = stay(0, 3)
    await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    with pytest.raises(RoomNotAvailableError) as exc:
        await reservations.create_reservation(
            "guest-2", rooms["101"], check_in + timedelta(days=1), check_out + timedelta(days=1), 1
        )

    assert exc.value.details["room_id"] == rooms["101"]
    assert (await db_counts())["bookings"] == 1


async def test_capacity_is_enforced(reservations, rooms, stay):
    check_in, check_out = stay(0, 1)

    with pytest.raises(CapacityExceededError) as exc:
        await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 3)
    assert exc.value.details["max_occupancy"] == 2

    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 2)
    assert booking.number_of_guests == 2


async def test_closed_room_cannot_be_reserved(reservations, rooms, stay):
    check_in, check_out = stay(0, 1)

    with pytest.raises(RoomNotAvailableError):
        await reservations.create_reservation("guest-1", rooms["301"], check_in, check_out, 1)


async def test_unknown_room_is_reported(reservations, rooms, stay):
    check_in, check_out = stay(0, 1)

    with pytest.raises(RoomNotFoundError):
        await reservations.create_reservation("guest-1", 9999, check_in, check_out, 1)


@pytest.mark.parametrize("overrides, field", [
    ({"user_id": "  "}, "user_id"),
    ({"room_id": 0}, "room_id"),
    ({"number_of_guests": 0}, "number_of_guests"),
    ({"check_out_offset": 0}, "check_out"),
    ({"check_out_offset": -1}, "check_out"),
    ({"past": True}, "check_in"),
])
async def test_invalid_requests_fail_validation(reservations, rooms, stay, db_counts, overrides, field):
    check_in, check_out = stay(0, 2)
    if "check_out_offset" in overrides:
        check_out = check_in + timedelta(days=overrides["check_out_offset"])
    if overrides.get("past"):
        check_in = date.today() - timedelta(days=10)
        check_out = check_in + timedelta(days=2)

    with pytest.raises(ValidationError) as exc:
        await reservations.create_reservation(
            overrides.get("user_id", "guest-1"),
            overrides.get("room_id", rooms["101"]),
            check_in,
            check_out,
            overrides.get("number_of_guests", 1),
        )

    assert exc.value.details == {"field": field}
    assert (await db_counts())["bookings"] == 0


async def test_validation_runs_before_any_lookup(reservations, stay):
    check_in, check_out = stay(0, 2)

    # The room does not exist, but the bad guest count is reported first
    with pytest.raises(ValidationError):
        await reservations.create_reservation("guest-1", 9999, check_in, check_out, 0)


async def test_failure_while_recording_history_rolls_back_everything(
    reservations, rooms, stay, monkeypatch, db_counts, load_room
):
    async def broken_record_creation(self, booking, changed_by_user_id):
        raise RuntimeError("history table unavailable")

    monkeypatch.setattr(BookingStateMachine, "record_creation", broken_record_creation)
    check_in, check_out = stay(0, 2)

    with pytest.raises(RuntimeError):
        await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    counts = await db_counts()
    assert counts["bookings"] == 0
    assert counts["history"] == 0
    assert (await load_room(rooms["101"])).version == 1


async def test_deadline_rolls_back_and_reports_timeout(reservations, rooms, stay, db_counts):
    async def slow_is_available(*args, **kwargs):
        await asyncio.sleep(1)
        return True

    reservations.availability.is_available = slow_is_available
    check_in, check_out = stay(0, 2)

    with pytest.raises(TransactionTimeoutError) as exc:
        await reservations.create_reservation(
            "guest-1", rooms["101"], check_in, check_out, 1, timeout=0.05
        )

    assert exc.value.details["operation"] == "create_reservation"
    assert (await db_counts())["bookings"] == 0


async def test_notification_failure_does_not_undo_reservation(session, failing_notifier, rooms, stay, load_booking):
    reservations = ReservationService(session, notifier=failing_notifier)
    check_in, check_out = stay(0, 2)

    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    stored = await load_booking(booking.id)
    assert stored is not None
    assert stored.status == BookingStatus.PENDING


async def test_cancel_is_a_no_op_on_terminal_bookings(reservations, rooms, stay, notifier, db_counts):
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    assert await reservations.cancel_reservation(booking.id, "guest-1") is True
    assert await reservations.cancel_reservation(booking.id, "guest-1") is False

    history = await reservations.get_booking_history(booking.id, "guest-1")
    assert [h.new_status for h in history] == [BookingStatus.PENDING, BookingStatus.CANCELLED]
    assert history[-1].notes == "Booking cancelled by the user"
    assert notifier.kinds_for(booking.id).count(NotificationKind.BOOKING_CANCELLED) == 1


async def test_completed_booking_cannot_be_cancelled(reservations, rooms, stay):
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)
    await reservations.complete_stay(booking.id)

    assert await reservations.cancel_reservation(booking.id, "guest-1") is False
    assert await reservations.cancel_reservation_as_admin(booking.id, "admin-1") is False

    with pytest.raises(InvalidTransitionError):
        await reservations.complete_stay(booking.id)


async def test_missing_and_foreign_bookings_look_the_same(reservations, rooms, stay):
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)
    booking_id = booking.id

    with pytest.raises(BookingAccessDeniedError) as foreign:
        await reservations.cancel_reservation(booking_id, "guest-2")
    with pytest.raises(BookingAccessDeniedError) as missing:
        await reservations.cancel_reservation(booking_id + 100, "guest-2")

    assert foreign.value.error_code == missing.value.error_code
    assert foreign.value.message == f"Booking {booking_id} not found"
    assert missing.value.message == f"Booking {booking_id + 100} not found"

    with pytest.raises(BookingAccessDeniedError):
        await reservations.get_booking_for_user(booking_id, "guest-2")

    # The owner is untouched by the refused attempt
    assert (await reservations.get_booking_for_user(booking_id, "guest-1")).status == BookingStatus.PENDING


async def test_admin_cancellation_records_reason(reservations, rooms, stay):
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    assert await reservations.cancel_reservation_as_admin(booking.id, "admin-1", reason="Maintenance")

    history = await reservations.get_booking_history(booking.id)
    assert history[-1].changed_by_user_id == "admin-1"
    assert history[-1].notes == "Booking cancelled by an administrator - Reason: Maintenance"

    with pytest.raises(BookingNotFoundError):
        await reservations.cancel_reservation_as_admin(booking.id + 100, "admin-1")


async def test_cancelled_stay_can_be_rebooked(reservations, rooms, stay):
    check_in, check_out = stay(0, 2)
    first = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)
    await reservations.cancel_reservation(first.id, "guest-1")

    second = await reservations.create_reservation("guest-2", rooms["101"], check_in, check_out, 1)
    assert second.id != first.id


async def test_calculate_total_amount(reservations, rooms, stay):
    check_in, check_out = stay(0, 2)
    assert await reservations.calculate_total_amount(rooms["201"], check_in, check_out) == Decimal("499.98")

    with pytest.raises(RoomNotFoundError):
        await reservations.calculate_total_amount(9999, check_in, check_out)


async def test_user_bookings_are_scoped_and_filterable(reservations, rooms, stay):
    a_in, a_out = stay(0, 1)
    b_in, b_out = stay(5, 1)
    first = await reservations.create_reservation("guest-1", rooms["101"], a_in, a_out, 1)
    second = await reservations.create_reservation("guest-1", rooms["102"], b_in, b_out, 1)
    await reservations.create_reservation("guest-2", rooms["201"], a_in, a_out, 1)
    await reservations.cancel_reservation(first.id, "guest-1")

    mine = await reservations.get_user_bookings("guest-1")
    assert {b.id for b in mine} == {first.id, second.id}

    pending = await reservations.get_user_bookings("guest-1", status_filter=[BookingStatus.PENDING])
    assert [b.id for b in pending] == [second.id]

    assert len(await reservations.get_user_bookings("guest-1", limit=1)) == 1


async def test_expire_unpaid_reservations(reservations, rooms, stay, load_booking, notifier):
    check_in, check_out = stay(0, 2)
    booking = await reservations.create_reservation("guest-1", rooms["101"], check_in, check_out, 1)

    # Still inside the hold
    assert await reservations.expire_unpaid_reservations() == 0

    later = datetime.now(timezone.utc) + timedelta(
        minutes=get_settings().booking_hold_timeout_minutes + 1
    )
    assert await reservations.expire_unpaid_reservations(now=later) == 1
    assert await reservations.expire_unpaid_reservations(now=later) == 0

    stored = await load_booking(booking.id)
    assert stored.status == BookingStatus.CANCELLED

    history = await reservations.get_booking_history(booking.id)
    assert history[-1].changed_by_user_id == SYSTEM_ACTOR
    assert history[-1].notes == "Payment hold expired"
    assert NotificationKind.BOOKING_CANCELLED in notifier.kinds_for(booking.id)


async def test_complete_finished_stays_only_touches_paid_bookings(session, reservations, rooms, stay, gateway, notifier, load_booking):
    paid_in, paid_out = stay(0, 2)
    unpaid_in, unpaid_out = stay(0, 2)
    paid = await reservations.create_reservation("guest-1", rooms["101"], paid_in, paid_out, 1)
    unpaid = await reservations.create_reservation("guest-2", rooms["102"], unpaid_in, unpaid_out, 1)

    payments = PaymentService(session, gateway=gateway, notifier=notifier)
    await payments.confirm_payment(paid.id, "cs_paid")

    assert await reservations.complete_finished_stays(today=paid_in) == 0
    assert await reservations.complete_finished_stays(today=paid_out) == 1

    assert (await load_booking(paid.id)).status == BookingStatus.COMPLETED
    assert (await load_booking(unpaid.id)).status == BookingStatus.PENDING
    assert NotificationKind.BOOKING_COMPLETED in notifier.kinds_for(paid.id)
