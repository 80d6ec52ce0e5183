"""
BookingPayment model for payment attempts recorded against a booking.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .booking import Booking


class PaymentStatus(enum.Enum):
    """Enumeration for payment status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"


class BookingPayment(Base):
    """
    One payment attempt for a booking. Only the status changes after insert.

    A refund moves the row completed -> refund_pending -> refunded; the
    conditional first step lets exactly one caller reach the gateway.
    """

    __tablename__ = "booking_payments"

    booking_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Correlation handles issued by the payment gateway
    external_session_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        unique=True
    )
    external_intent_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        unique=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )

    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_booking_payments_amount_non_negative"),
    )

    @property
    def gateway_reference(self) -> Optional[str]:
        """Reference the gateway expects for follow-up calls such as refunds."""
        return self.external_intent_id or self.external_session_id

    def __repr__(self) -> str:
        return (
            f"<BookingPayment(id={self.id}, booking_id={self.booking_id}, "
            f"amount={self.amount} {self.currency}, status={self.payment_status.value})>"
        )
