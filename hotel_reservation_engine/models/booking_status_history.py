"""
BookingStatusHistory model for the append-only booking audit trail.
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow
from .booking import BookingStatus

if TYPE_CHECKING:
    from .booking import Booking


SYSTEM_ACTOR = "system"


class BookingStatusHistory(Base):
    """One row per booking status change, including the initial creation entry."""

    __tablename__ = "booking_status_history"

    booking_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    previous_status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), nullable=False)
    new_status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), nullable=False)

    # Customer id, admin id, or SYSTEM_ACTOR
    changed_by_user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="status_history")

    def __repr__(self) -> str:
        """String representation of the history entry."""
        return (
            f"<BookingStatusHistory(id={self.id}, booking_id={self.booking_id}, "
            f"{self.previous_status.value}->{self.new_status.value}, changed_at={self.changed_at})>"
        )
