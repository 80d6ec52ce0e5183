"""
Booking model for managing room reservations.
"""

import enum
from datetime import date
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .room import Room
    from .booking_payment import BookingPayment
    from .booking_status_history import BookingStatusHistory


class BookingStatus(enum.Enum):
    """Enumeration for booking status."""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Booking(Base):
    """Booking model for managing room reservations."""

    __tablename__ = "bookings"

    room_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rooms.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Opaque identity supplied by the identity provider
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Stay dates, half-open [check_in, check_out)
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)

    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal('0.00')
    )

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )

    special_requests: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Optimistic locking for concurrent status transitions
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    room: Mapped["Room"] = relationship("Room", back_populates="bookings")

    payments: Mapped[List["BookingPayment"]] = relationship(
        "BookingPayment",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingPayment.id"
    )

    status_history: Mapped[List["BookingStatusHistory"]] = relationship(
        "BookingStatusHistory",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingStatusHistory.id"
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("check_in < check_out", name="ck_bookings_date_range"),
        CheckConstraint("number_of_guests > 0", name="ck_bookings_guests_positive"),
        CheckConstraint("total_amount >= 0", name="ck_bookings_total_amount_non_negative"),
        CheckConstraint("version > 0", name="ck_bookings_version_positive"),
        Index("ix_bookings_room_dates", "room_id", "check_in", "check_out"),
    )

    @property
    def nights(self) -> int:
        """Number of billed nights."""
        return (self.check_out - self.check_in).days

    @property
    def is_active(self) -> bool:
        """Check if the booking still holds its room (anything but cancelled)."""
        return self.status != BookingStatus.CANCELLED

    @property
    def is_terminal(self) -> bool:
        """Check if the booking can no longer change status."""
        return self.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    def __repr__(self) -> str:
        """String representation of the booking."""
        return (
            f"<Booking(id={self.id}, user_id={self.user_id}, room_id={self.room_id}, "
            f"check_in={self.check_in}, check_out={self.check_out}, status={self.status.value})>"
        )
