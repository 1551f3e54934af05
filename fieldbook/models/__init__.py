"""SQLAlchemy models; importing this package registers every table on Base.metadata."""

from .booking import ALLOWED_TRANSITIONS, Booking, BookingStatus, can_transition
from .branch import Branch, FieldType
from .field import Field, FieldStatus
from .payment import Payment, build_order_id

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Booking",
    "BookingStatus",
    "Branch",
    "Field",
    "FieldStatus",
    "FieldType",
    "Payment",
    "build_order_id",
    "can_transition",
]
