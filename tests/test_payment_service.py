from decimal import Decimal

import pytest
from sqlalchemy import select

from hotel_reservation_engine.models import (
    BookingPayment,
    BookingStatus,
    PaymentStatus,
    SYSTEM_ACTOR,
)
from hotel_reservation_engine.services.notification_service import NotificationKind
from hotel_reservation_engine.services.payment_service import (
    PaymentConfirmationOutcome,
    PaymentService,
)
from hotel_reservation_engine.services.reservation_service import ReservationService
from hotel_reservation_engine.utils.exceptions import (
    BookingAccessDeniedError,
    InvalidTransitionError,
    PaymentServiceError,
)


@pytest.fixture
async def booking(session, rooms, notifier, stay):
    check_in, check_out = stay(0, 3)
    return await ReservationService(session, notifier=notifier).create_reservation(
        "guest-1", rooms["101"], check_in, check_out, 1
    )


@pytest.fixture
def payments(session, gateway, notifier):
    return PaymentService(session, gateway=gateway, notifier=notifier)


async def _payments_for(session_factory, booking_id):
    async with session_factory() as fresh:
        result = await fresh.execute(
            select(BookingPayment)
            .where(BookingPayment.booking_id == booking_id)
            .order_by(BookingPayment.id)
        )
        return list(result.scalars().all())


async def test_initiate_payment_uses_booking_total(payments, booking, gateway, db_counts):
    payment_session = await payments.initiate_payment(booking.id, "guest-1")

    assert payment_session.session_id == "cs_test_1"
    assert payment_session.amount == Decimal("300.00")
    assert gateway.initiated[0]["metadata"] == {"booking_id": booking.id, "user_id": "guest-1"}
    assert gateway.initiated[0]["currency"] == "usd"

    # Initiation writes nothing locally
    assert (await db_counts(booking.id))["payments"] == 0


async def test_initiate_payment_refuses_other_users_and_settled_bookings(payments, booking, gateway):
    with pytest.raises(BookingAccessDeniedError):
        await payments.initiate_payment(booking.id, "guest-2")
    with pytest.raises(BookingAccessDeniedError):
        await payments.initiate_payment(booking.id + 100, "guest-1")

    await payments.confirm_payment(booking.id, "cs_1")

    with pytest.raises(InvalidTransitionError):
        await payments.initiate_payment(booking.id, "guest-1")

    assert gateway.initiated == []


async def test_confirm_payment_marks_booking_paid(payments, booking, notifier, load_booking, session_factory):
    outcome = await payments.confirm_payment(booking.id, "cs_1", external_intent_id="pi_1")

    assert outcome == PaymentConfirmationOutcome.CONFIRMED

    stored = await load_booking(booking.id)
    assert stored.status == BookingStatus.PAID
    assert stored.version == 2

    rows = await _payments_for(session_factory, booking.id)
    assert len(rows) == 1
    assert rows[0].payment_status == PaymentStatus.COMPLETED
    assert rows[0].amount == Decimal("300.00")
    assert rows[0].external_session_id == "cs_1"
    assert rows[0].gateway_reference == "pi_1"

    assert NotificationKind.BOOKING_CONFIRMED in notifier.kinds_for(booking.id)


async def test_duplicate_confirmation_is_a_no_op(payments, booking, notifier, session_factory):
    assert await payments.confirm_payment(booking.id, "cs_1") == PaymentConfirmationOutcome.CONFIRMED
    assert await payments.confirm_payment(booking.id, "cs_1") == PaymentConfirmationOutcome.ALREADY_PROCESSED

    history = await ReservationService(payments.session).get_booking_history(booking.id)
    assert [h.new_status for h in history].count(BookingStatus.PAID) == 1
    assert history[-1].changed_by_user_id == SYSTEM_ACTOR
    assert history[-1].notes == "Payment confirmed for session cs_1"

    assert len(await _payments_for(session_factory, booking.id)) == 1
    assert notifier.kinds_for(booking.id).count(NotificationKind.BOOKING_CONFIRMED) == 1


async def test_confirmation_for_unknown_booking(payments, rooms):
    outcome = await payments.confirm_payment(4242, "cs_orphan")
    assert outcome == PaymentConfirmationOutcome.BOOKING_NOT_FOUND


async def test_confirmation_after_cancellation_is_ignored(payments, booking, load_booking, db_counts):
    await ReservationService(payments.session, notifier=payments.notifier).cancel_reservation(booking.id, "guest-1")

    outcome = await payments.confirm_payment(booking.id, "cs_late")

    assert outcome == PaymentConfirmationOutcome.ALREADY_PROCESSED
    assert (await load_booking(booking.id)).status == BookingStatus.CANCELLED
    assert (await db_counts(booking.id))["payments"] == 0


async def test_failed_attempt_is_promoted_by_a_later_success(payments, booking, load_booking, session_factory):
    assert await payments.record_payment_failure(booking.id, "cs_1", reason="insufficient_funds") is True
    assert await payments.record_payment_failure(booking.id, "cs_1", reason="again") is False
    assert await payments.record_payment_failure(booking.id + 100, "cs_2") is False

    assert (await load_booking(booking.id)).status == BookingStatus.PENDING

    outcome = await payments.confirm_payment(booking.id, "cs_1", amount=Decimal("300.00"))
    assert outcome == PaymentConfirmationOutcome.CONFIRMED

    rows = await _payments_for(session_factory, booking.id)
    assert len(rows) == 1
    assert rows[0].payment_status == PaymentStatus.COMPLETED
    assert rows[0].failure_reason is None


async def test_failure_recorded_concurrently_is_reported_not_raised(payments, booking, session_factory):
    booking_id = booking.id
    assert await payments.record_payment_failure(booking_id, "cs_1", reason="insufficient_funds") is True

    # Another delivery that checked before the first row was committed
    async def nothing_recorded_yet(session_id):
        return None

    late = PaymentService(payments.session, gateway=payments.gateway, notifier=payments.notifier)
    late._get_payment_by_session = nothing_recorded_yet

    assert await late.record_payment_failure(booking_id, "cs_1", reason="insufficient_funds") is False
    assert len(await _payments_for(session_factory, booking_id)) == 1


async def test_refund_cancels_paid_booking(payments, booking, gateway, notifier, load_booking, session_factory):
    await payments.confirm_payment(booking.id, "cs_1", external_intent_id="pi_1")

    assert await payments.refund_and_cancel(booking.id, "admin-1", reason="Guest request") is True

    assert gateway.refunds == [("pi_1", Decimal("300.00"))]

    stored = await load_booking(booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.version == 3

    rows = await _payments_for(session_factory, booking.id)
    assert rows[0].payment_status == PaymentStatus.REFUNDED

    history = await ReservationService(payments.session).get_booking_history(booking.id)
    assert history[-1].changed_by_user_id == "admin-1"
    assert history[-1].notes == "Refunded payment pi_1 (refund re_1) - Reason: Guest request"
    assert NotificationKind.BOOKING_REFUNDED in notifier.kinds_for(booking.id)

    # Already cancelled, nothing more to refund
    assert await payments.refund_and_cancel(booking.id) is False
    assert len(gateway.refunds) == 1


async def test_declined_refund_leaves_booking_paid(session, booking, declining_gateway, notifier, load_booking, session_factory):
    payments = PaymentService(session, gateway=declining_gateway, notifier=notifier)
    await payments.confirm_payment(booking.id, "cs_1")

    assert await payments.refund_and_cancel(booking.id) is False

    assert declining_gateway.refunds == [("cs_1", Decimal("300.00"))]
    assert (await load_booking(booking.id)).status == BookingStatus.PAID
    assert (await _payments_for(session_factory, booking.id))[0].payment_status == PaymentStatus.COMPLETED


async def test_gateway_outage_releases_the_refund_claim(payments, booking, gateway, load_booking, session_factory):
    booking_id = booking.id
    await payments.confirm_payment(booking_id, "cs_1")

    async def gateway_down():
        raise PaymentServiceError("connection reset")

    gateway.during_refund = gateway_down
    with pytest.raises(PaymentServiceError):
        await payments.refund_and_cancel(booking_id)

    assert (await load_booking(booking_id)).status == BookingStatus.PAID
    assert (await _payments_for(session_factory, booking_id))[0].payment_status == PaymentStatus.COMPLETED

    # The retry reuses the same idempotency key
    gateway.during_refund = None
    assert await payments.refund_and_cancel(booking_id) is True
    assert gateway.refund_keys[0] == gateway.refund_keys[1]
    assert (await load_booking(booking_id)).status == BookingStatus.CANCELLED


async def test_unpaid_booking_is_not_refunded(payments, booking, gateway):
    assert await payments.refund_and_cancel(booking.id) is False
    assert gateway.refunds == []
