"""
Celery tasks for guest notifications.
"""

import logging

from .celery_app import celery_app, run_async
from ..database import standalone_session
from ..services.notification_service import NotificationKind, NotificationService

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="send_booking_notification_task",
    max_retries=3,
    default_retry_delay=60
)
def send_booking_notification_task(self, kind: str, booking_id: int):
    """
    Task to send one booking lifecycle e-mail.

    Args:
        kind: NotificationKind value
        booking_id: ID of the booking
    """
    notification_kind = NotificationKind(kind)

    async def _send():
        logger.info(f"Sending {kind} notification for booking {booking_id}")

        async with standalone_session() as session:
            notification_service = NotificationService(session)
            return await notification_service.send_booking_notification(notification_kind, booking_id)

    success = run_async(_send())

    if success:
        return {"booking_id": booking_id, "kind": kind, "status": "sent"}

    logger.error(f"Failed to send {kind} notification for booking {booking_id}")
    return {"booking_id": booking_id, "kind": kind, "status": "failed"}
