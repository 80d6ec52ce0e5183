"""
Celery tasks for booking housekeeping: unpaid hold expiry and stay completion.
"""

import logging

from .celery_app import celery_app, run_async
from ..database import standalone_session
from ..services.reservation_service import ReservationService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="expire_unpaid_bookings_task")
def expire_unpaid_bookings_task(self):
    """
    Periodic task cancelling pending bookings whose payment hold ran out.

    Runs every minute; each expired booking is cancelled in its own
    transaction by the system actor.
    """

    async def _expire():
        logger.info("Starting unpaid booking expiration task")

        async with standalone_session() as session:
            reservation_service = ReservationService(session)
            return await reservation_service.expire_unpaid_reservations()

    expired_count = run_async(_expire())
    return {"expired_count": expired_count}


@celery_app.task(bind=True, name="complete_finished_stays_task")
def complete_finished_stays_task(self):
    """Periodic task completing paid bookings whose departure day has come."""

    async def _complete():
        logger.info("Starting stay completion task")

        async with standalone_session() as session:
            reservation_service = ReservationService(session)
            return await reservation_service.complete_finished_stays()

    completed_count = run_async(_complete())
    return {"completed_count": completed_count}
