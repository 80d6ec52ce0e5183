"""
Shared fixtures: a file-backed SQLite database per test, seeded rooms,
and in-memory stand-ins for the notifier and the payment gateway.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import func, select

from hotel_reservation_engine.database import (
    create_database_engine,
    create_session_factory,
    create_tables,
)
from hotel_reservation_engine.models import (
    Booking,
    BookingPayment,
    BookingStatusHistory,
    Room,
    RoomType,
)
from hotel_reservation_engine.services.notification_service import BookingNotifier
from hotel_reservation_engine.services.payment_gateway import (
    PaymentGateway,
    PaymentSession,
    RefundResult,
)
from hotel_reservation_engine.utils.auth import create_access_token


class RecordingNotifier(BookingNotifier):
    """Keeps notifications in memory instead of queueing Celery tasks."""

    def __init__(self):
        self.sent: List[Tuple[Any, int]] = []

    def notify(self, kind, booking_id):
        self.sent.append((kind, booking_id))

    def kinds_for(self, booking_id: int) -> list:
        return [kind for kind, sent_id in self.sent if sent_id == booking_id]


class FailingNotifier(BookingNotifier):
    def notify(self, kind, booking_id):
        raise RuntimeError("broker unavailable")


class FakePaymentGateway(PaymentGateway):
    """Gateway double that hands out sequential session ids."""

    def __init__(self, refund_succeeds: bool = True):
        self.refund_succeeds = refund_succeeds
        self.initiated: List[Dict[str, Any]] = []
        self.refunds: List[Tuple[str, Decimal]] = []
        self.refund_keys: List[Optional[str]] = []
        # Awaited mid-refund, to let a test change the world under the caller
        self.during_refund: Optional[Callable[[], Awaitable[None]]] = None

    async def initiate(self, amount, currency, metadata):
        session_id = f"cs_test_{len(self.initiated) + 1}"
        self.initiated.append({"amount": amount, "currency": currency, "metadata": metadata})
        return PaymentSession(
            session_id=session_id,
            amount=amount,
            currency=currency,
            checkout_url=f"https://pay.test/{session_id}",
            metadata=dict(metadata),
        )

    async def refund(self, reference, amount, idempotency_key=None):
        self.refunds.append((reference, amount))
        self.refund_keys.append(idempotency_key)
        if self.during_refund is not None:
            await self.during_refund()
        if self.refund_succeeds:
            return RefundResult(succeeded=True, refund_id=f"re_{len(self.refunds)}")
        return RefundResult(succeeded=False, failure_reason="card_declined")


@pytest.fixture
async def engine(tmp_path):
    engine = create_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def rooms(session_factory) -> Dict[str, int]:
    """Seed the catalog and return room ids keyed by room number."""
    async with session_factory() as session:
        async with session.begin():
            standard = RoomType(name="Standard", price_per_night=Decimal("100.00"), max_occupancy=2)
            suite = RoomType(name="Suite", price_per_night=Decimal("249.99"), max_occupancy=4)
            session.add_all([standard, suite])
            await session.flush()

            seeded = {
                "101": Room(room_number="101", room_type_id=standard.id),
                "102": Room(room_number="102", room_type_id=standard.id),
                "201": Room(room_number="201", room_type_id=suite.id),
                "301": Room(room_number="301", room_type_id=standard.id, is_available=False),
            }
            session.add_all(seeded.values())

    return {number: room.id for number, room in seeded.items()}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def declining_gateway():
    return FakePaymentGateway(refund_succeeds=False)


@pytest.fixture
def token_for():
    def _token(user_id: str, is_admin: bool = False, email: str = None) -> Dict[str, str]:
        claims = {"sub": user_id, "email": email or f"{user_id}@example.com"}
        if is_admin:
            claims["role"] = "admin"
        return {"Authorization": f"Bearer {create_access_token(claims)}"}
    return _token


@pytest.fixture
def db_counts(session_factory):
    """Row counts read through a fresh session, so nothing comes from an identity map."""
    async def _counts(booking_id: int = None) -> Dict[str, int]:
        async with session_factory() as fresh:
            bookings = select(func.count(Booking.id))
            history = select(func.count(BookingStatusHistory.id))
            payments = select(func.count(BookingPayment.id))
            if booking_id is not None:
                history = history.where(BookingStatusHistory.booking_id == booking_id)
                payments = payments.where(BookingPayment.booking_id == booking_id)
            return {
                "bookings": await fresh.scalar(bookings),
                "history": await fresh.scalar(history),
                "payments": await fresh.scalar(payments),
            }
    return _counts


@pytest.fixture
def load_booking(session_factory):
    async def _load(booking_id: int) -> Booking:
        async with session_factory() as fresh:
            return await fresh.get(Booking, booking_id)
    return _load


@pytest.fixture
def load_room(session_factory):
    async def _load(room_id: int) -> Room:
        async with session_factory() as fresh:
            return await fresh.get(Room, room_id)
    return _load


@pytest.fixture
def stay():
    """Build a stay starting ``offset_days`` after a date safely in the future."""
    def _stay(offset_days: int, nights: int) -> Tuple[date, date]:
        check_in = date.today() + timedelta(days=30 + offset_days)
        return check_in, check_in + timedelta(days=nights)
    return _stay
