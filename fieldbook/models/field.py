"""Bookable field (court) model."""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from ..database import Base


class FieldStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"  # legacy display value, still bookable for other slots
    MAINTENANCE = "maintenance"
    CLOSED = "closed"


NON_BOOKABLE_FIELD_STATUSES = frozenset({FieldStatus.MAINTENANCE.value, FieldStatus.CLOSED.value})


class Field(Base):
    """
    A bookable resource.

    Fields are never deleted while bookings reference them; they are taken out
    of service by moving to ``closed`` or ``maintenance``.

    ``reservation_seq`` is bumped at the start of every reservation
    transaction. The UPDATE takes the row (Postgres) or database (SQLite) write
    lock, so availability re-checks for the same field run one at a time.
    """

    __tablename__ = "fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    type_id = Column(Integer, ForeignKey("field_types.id"), nullable=True)
    name = Column(String(100), nullable=False)
    day_rate = Column(Numeric(12, 2), nullable=False, default=0)
    night_rate = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=FieldStatus.AVAILABLE.value)
    reservation_seq = Column(Integer, nullable=False, default=0)

    branch = relationship("Branch", back_populates="fields")
    field_type = relationship("FieldType", back_populates="fields")
    bookings = relationship("Booking", back_populates="field")

    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'booked', 'maintenance', 'closed')",
            name="ck_fields_status",
        ),
    )

    @property
    def is_bookable(self) -> bool:
        return self.status not in NON_BOOKABLE_FIELD_STATUSES

    def __repr__(self) -> str:
        return f"<Field {self.id} branch={self.branch_id} status={self.status}>"
