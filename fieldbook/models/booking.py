# fieldbook/models/booking.py
"""
Booking model.

A booking reserves one field for one contiguous, half-open interval
``[start_time, end_time)`` on a single date. The date and times are wall-clock
values in the facility timezone; an end time of 00:00 means midnight at the
end of ``booking_date``.
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Dict, FrozenSet

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.timezone_utils import time_to_minutes
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting payment, holds the slot until its deadline
    CONFIRMED = "confirmed"  # Payment settled
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"  # Payment deadline lapsed


ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    BookingStatus.PENDING.value: frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value, BookingStatus.EXPIRED.value}
    ),
    BookingStatus.CONFIRMED.value: frozenset(
        {BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value}
    ),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.EXPIRED.value: frozenset(),
    BookingStatus.COMPLETED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class Booking(Base):
    """Reservation of one field for one interval on one date."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(64), nullable=False, index=True)
    field_id = Column(Integer, ForeignKey("fields.id"), nullable=False)

    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)
    payment_deadline = Column(UTCDateTime, nullable=False)
    confirmed_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    # Cancellation tracking
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    field = relationship("Field", back_populates="bookings")
    payment = relationship("Payment", back_populates="booking", uselist=False)

    __table_args__ = (
        Index("ix_bookings_field_date_status", "field_id", "booking_date", "status"),
        Index("ix_bookings_status_deadline", "status", "payment_deadline"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'expired')",
            name="ck_bookings_status",
        ),
        # An end of 00:00 is the end of the day
        CheckConstraint(
            "start_time < end_time OR end_time < '00:00:01'",
            name="ck_bookings_nonempty_interval",
        ),
    )

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time, is_end=True)

    @property
    def payment_id(self) -> str | None:
        return self.payment.id if self.payment is not None else None

    def holds_slot(self, now: datetime) -> bool:
        """True when this booking blocks its interval at instant ``now``."""
        if self.status == BookingStatus.CONFIRMED.value:
            return True
        return self.status == BookingStatus.PENDING.value and self.payment_deadline > now

    def is_deadline_elapsed(self, now: datetime) -> bool:
        return now >= self.payment_deadline

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} field={self.field_id} {self.booking_date} "
            f"{self.start_time}-{self.end_time} {self.status}>"
        )
