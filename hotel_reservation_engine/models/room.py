"""
Room and room type models. Catalog data, read-only for the reservation engine.
"""

from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .booking import Booking


class RoomType(Base):
    """Pricing and capacity entry shared by a group of rooms."""

    __tablename__ = "room_types"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    price_per_night: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    max_occupancy: Mapped[int] = mapped_column(Integer, nullable=False)

    rooms: Mapped[List["Room"]] = relationship("Room", back_populates="room_type")

    __table_args__ = (
        CheckConstraint("price_per_night >= 0", name="ck_room_types_price_non_negative"),
        CheckConstraint("max_occupancy > 0", name="ck_room_types_max_occupancy_positive"),
    )

    def __repr__(self) -> str:
        return f"<RoomType(id={self.id}, name='{self.name}', price_per_night={self.price_per_night})>"


class Room(Base):
    """A bookable hotel room."""

    __tablename__ = "rooms"

    room_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    room_type_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("room_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Administrative flag, independent of bookings
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Optimistic locking; also bumped by every reservation claiming this room
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    room_type: Mapped["RoomType"] = relationship("RoomType", back_populates="rooms")
    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="room",
        passive_deletes="all"
    )

    __table_args__ = (
        CheckConstraint("version > 0", name="ck_rooms_version_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<Room(id={self.id}, room_number='{self.room_number}', "
            f"room_type_id={self.room_type_id}, is_available={self.is_available})>"
        )
