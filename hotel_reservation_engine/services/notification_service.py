"""
Notification service for guest e-mails about booking lifecycle events.
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import get_settings
from ..models.booking import Booking
from ..models.room import Room
from ..utils.circuit_breaker import get_email_circuit_breaker
from ..utils.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Booking events that produce a guest notification."""
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REFUNDED = "booking_refunded"
    BOOKING_COMPLETED = "booking_completed"


# Subject line and headline per event
_MESSAGES: Dict[NotificationKind, tuple] = {
    NotificationKind.BOOKING_CREATED: (
        "Reservation received",
        "Your reservation is on hold until payment is completed.",
    ),
    NotificationKind.BOOKING_CONFIRMED: (
        "Reservation confirmed",
        "Your payment was received and your reservation is confirmed.",
    ),
    NotificationKind.BOOKING_CANCELLED: (
        "Reservation cancelled",
        "Your reservation has been cancelled.",
    ),
    NotificationKind.BOOKING_REFUNDED: (
        "Reservation refunded",
        "Your reservation has been cancelled and your payment refunded.",
    ),
    NotificationKind.BOOKING_COMPLETED: (
        "Thank you for staying with us",
        "Your stay is complete. We hope to welcome you back soon.",
    ),
}


class BookingNotifier:
    """
    Queues booking notifications on the Celery broker.

    Services call this after their transaction commits. Delivery happens
    in a worker, so a slow or failing mail relay never holds a
    reservation transaction open.
    """

    def notify(self, kind: NotificationKind, booking_id: int) -> None:
        from ..tasks.notification_tasks import send_booking_notification_task
        send_booking_notification_task.delay(kind.value, booking_id)
        logger.info(f"Queued {kind.value} notification for booking {booking_id}")


class NotificationService:
    """Service for rendering and sending booking e-mails."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()

    async def send_booking_notification(self, kind: NotificationKind, booking_id: int) -> bool:
        """
        Send the e-mail for one booking event.

        Args:
            kind: Which lifecycle event happened
            booking_id: ID of the booking

        Returns:
            bool: True if the e-mail was handed to the SMTP relay
        """
        booking = await self._get_booking_with_details(booking_id)
        if not booking:
            logger.error(f"Booking {booking_id} not found")
            return False

        if not booking.guest_email:
            logger.info(f"Booking {booking_id} has no guest e-mail, skipping {kind.value}")
            return False

        subject, headline = _MESSAGES[kind]
        template_data = {
            "headline": headline,
            "booking_id": str(booking.id),
            "room_number": booking.room.room_number,
            "room_type": booking.room.room_type.name,
            "check_in": booking.check_in.strftime("%B %d, %Y"),
            "check_out": booking.check_out.strftime("%B %d, %Y"),
            "nights": booking.nights,
            "guests": booking.number_of_guests,
            "total_amount": f"{booking.total_amount:.2f} {self.settings.default_currency.upper()}",
            "status": booking.status.value,
        }

        success = await self._send_email(
            to_email=booking.guest_email,
            subject=f"{subject} - booking #{booking.id}",
            html_content=self._render_html(template_data),
            text_content=self._render_text(template_data)
        )

        if success:
            logger.info(f"{kind.value} notification sent for booking {booking_id}")
        else:
            logger.error(f"Failed to send {kind.value} notification for booking {booking_id}")

        return success

    async def _send_email(self, to_email: str, subject: str, html_content: str, text_content: str) -> bool:
        """
        Send email using SMTP.

        Returns:
            bool: True if email was sent successfully
        """
        if not self.settings.smtp_server or not self.settings.smtp_username:
            logger.warning("Email configuration not available, skipping email send")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_username
        msg["To"] = to_email

        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            await get_email_circuit_breaker().call(asyncio.to_thread, self._deliver, msg)
        except ExternalServiceError as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False

        logger.info(f"Email sent successfully to {to_email}")
        return True

    def _deliver(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.settings.smtp_server, self.settings.smtp_port) as server:
            if self.settings.smtp_use_tls:
                server.starttls()

            server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.send_message(msg)

    async def _get_booking_with_details(self, booking_id: int) -> Optional[Booking]:
        """Get booking with room and room type loaded."""
        stmt = (
            select(Booking)
            .options(selectinload(Booking.room).selectinload(Room.room_type))
            .where(Booking.id == booking_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _render_html(self, data: Dict) -> str:
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .booking-details {{ background-color: #f9f9f9; padding: 15px; border-radius: 5px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <p>{data['headline']}</p>
                <div class="booking-details">
                    <p><strong>Booking ID:</strong> {data['booking_id']}</p>
                    <p><strong>Room:</strong> {data['room_number']} ({data['room_type']})</p>
                    <p><strong>Check-in:</strong> {data['check_in']}</p>
                    <p><strong>Check-out:</strong> {data['check_out']}</p>
                    <p><strong>Nights:</strong> {data['nights']}</p>
                    <p><strong>Guests:</strong> {data['guests']}</p>
                    <p><strong>Total:</strong> {data['total_amount']}</p>
                    <p><strong>Status:</strong> {data['status']}</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _render_text(self, data: Dict) -> str:
        return f"""
        {data['headline']}

        Booking ID: {data['booking_id']}
        Room: {data['room_number']} ({data['room_type']})
        Check-in: {data['check_in']}
        Check-out: {data['check_out']}
        Nights: {data['nights']}
        Guests: {data['guests']}
        Total: {data['total_amount']}
        Status: {data['status']}
        """
