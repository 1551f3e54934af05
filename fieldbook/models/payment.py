"""Payment record, one-to-one with a booking."""

from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship
import ulid

from ..constants.payment_status import PaymentStatus
from ..database import Base
from .types import UTCDateTime

ORDER_ID_PREFIX = "PAY-"


def build_order_id(payment_id: str) -> str:
    """Order id sent to the gateway for a payment."""
    return f"{ORDER_ID_PREFIX}{payment_id}"


class Payment(Base):
    """
    Payment for a booking.

    Status changes only in response to gateway callbacks. ``external_transaction_id``
    is the key gateway notifications are resolved by; it defaults to the
    order id until the gateway assigns its own.
    """

    __tablename__ = "payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, unique=True)
    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=True)
    method = Column(String(50), nullable=False, default="gateway")
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    external_transaction_id = Column(String(100), nullable=True, unique=True, index=True)
    order_id = Column(String(40), nullable=True, unique=True)
    expires_at = Column(UTCDateTime, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)
    transaction_time = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)
    last_callback_payload = Column(JSON, nullable=True)

    booking = relationship("Booking", back_populates="payment")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'dp_paid', 'failed', 'refunded')",
            name="ck_payments_status",
        ),
    )

    def record_callback(self, payload: Optional[dict[str, Any]]) -> None:
        if payload is not None:
            self.last_callback_payload = dict(payload)

    def __repr__(self) -> str:
        return f"<Payment {self.id} booking={self.booking_id} {self.status}>"
