"""Booking domain events."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class BookingEventType(str, Enum):
    """Closed set of booking event kinds published to subscribers."""

    SLOT_RESERVED = "slotReserved"
    BOOKING_CONFIRMED = "bookingConfirmed"
    BOOKING_CANCELLED = "bookingCancelled"
    SLOT_RELEASED = "slotReleased"
    BOOKING_COMPLETED = "bookingCompleted"


# Target booking status -> event published after the transition commits
TRANSITION_EVENT_TYPES: Dict[str, BookingEventType] = {
    "pending": BookingEventType.SLOT_RESERVED,
    "confirmed": BookingEventType.BOOKING_CONFIRMED,
    "cancelled": BookingEventType.BOOKING_CANCELLED,
    "expired": BookingEventType.SLOT_RELEASED,
    "completed": BookingEventType.BOOKING_COMPLETED,
}


@dataclass(frozen=True)
class BookingEvent:
    """
    Fired after a booking state change has been committed.

    ``user_id`` and ``branch_id`` route the event; they are not part of the
    wire payload.
    """

    event_type: BookingEventType
    booking_id: str
    field_id: int
    status: str
    timestamp: datetime
    user_id: str
    branch_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type.value,
            "bookingId": self.booking_id,
            "fieldId": self.field_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
