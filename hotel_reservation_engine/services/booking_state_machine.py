"""
Booking status state machine with optimistic locking and an audit trail.
"""

import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..models.booking import Booking, BookingStatus
from ..models.booking_status_history import BookingStatusHistory
from ..utils.exceptions import InvalidTransitionError, OptimisticLockError

logger = logging.getLogger(__name__)


LEGAL_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.PAID,
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
    }),
    BookingStatus.PAID: frozenset({
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
    }),
    # Terminal
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


class BookingStateMachine:
    """
    Applies booking status changes.

    Every accepted change is a version-checked UPDATE on the booking row
    plus exactly one BookingStatusHistory row. The caller owns the
    transaction; nothing here commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
        """Check whether moving from ``current`` to ``new`` is allowed."""
        return new in LEGAL_TRANSITIONS.get(current, frozenset())

    async def transition(
        self,
        booking: Booking,
        new_status: BookingStatus,
        changed_by_user_id: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> BookingStatusHistory:
        """
        Move a booking to a new status.

        Args:
            booking: Booking as read by the caller
            new_status: Target status
            changed_by_user_id: Customer id, admin id, or ``"system"``
            notes: Free-text reason stored on the history row
            expected_version: Version the caller read; defaults to ``booking.version``

        Returns:
            The history row added to the session

        Raises:
            InvalidTransitionError: When the move is not allowed; nothing is written
            OptimisticLockError: When the row changed since it was read
        """
        current_status = booking.status

        if not self.can_transition(current_status, new_status):
            raise InvalidTransitionError(booking.id, current_status.value, new_status.value)

        version = booking.version if expected_version is None else expected_version

        result = await self.session.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.version == version,
                Booking.status == current_status,
            )
            .values(status=new_status, version=version + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(
                f"Stale write on booking {booking.id}: expected version {version}, "
                f"status {current_status.value}"
            )
            raise OptimisticLockError("Booking", booking.id)

        set_committed_value(booking, "status", new_status)
        set_committed_value(booking, "version", version + 1)

        history = BookingStatusHistory(
            booking_id=booking.id,
            previous_status=current_status,
            new_status=new_status,
            changed_by_user_id=changed_by_user_id,
            notes=notes,
        )
        self.session.add(history)
        await self.session.flush()

        logger.info(
            f"Booking {booking.id}: {current_status.value} -> {new_status.value} "
            f"by {changed_by_user_id}"
        )
        return history

    async def record_creation(self, booking: Booking, changed_by_user_id: str) -> BookingStatusHistory:
        """Append the initial pending -> pending entry for a new booking."""
        history = BookingStatusHistory(
            booking_id=booking.id,
            previous_status=BookingStatus.PENDING,
            new_status=BookingStatus.PENDING,
            changed_by_user_id=changed_by_user_id,
            notes="Booking created",
        )
        self.session.add(history)
        await self.session.flush()
        return history
