# fieldbook/repositories/booking_repository.py
"""
Booking Repository

Data access for bookings: the conflict candidate set used by availability
checks, guarded status transitions, and the scans the background sweeps run.
"""

from datetime import date, datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.payment), joinedload(Booking.field))

    def get_slot_holding_bookings(self, field_id: int, booking_date: date) -> List[Booking]:
        """
        Confirmed and pending bookings for a field/date regardless of deadline.

        Used to build cache entries; readers drop lapsed pending intervals at
        read time.
        """
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.field_id == field_id,
                    Booking.booking_date == booking_date,
                    Booking.status.in_(
                        [BookingStatus.CONFIRMED.value, BookingStatus.PENDING.value]
                    ),
                )
                .order_by(Booking.start_time)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error loading bookings for field {field_id} on {booking_date}: {str(e)}"
            )
            raise RepositoryException(f"Failed to load bookings: {str(e)}") from e

    def transition_status(
        self,
        booking_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        **values: Any,
    ) -> bool:
        """
        Compare-and-set the booking status.

        The UPDATE only matches while the booking is still in one of
        ``from_statuses``, so concurrent writers racing on the same booking
        cannot both win. Returns True when this call performed the transition.
        """
        try:
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status.in_(list(from_statuses)))
                .values(status=to_status, **values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error moving booking {booking_id} to {to_status}: {str(e)}")
            raise RepositoryException(f"Failed to update booking status: {str(e)}") from e

    def get_fresh(self, booking_id: str) -> Optional[Booking]:
        """Reload a booking, discarding any state cached in the session."""
        try:
            return self.db.get(Booking, booking_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.logger.error(f"Error reloading booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to reload booking: {str(e)}") from e

    def find_lapsed_pending_ids(self, now: datetime, limit: int = 500) -> List[str]:
        """Ids of pending bookings whose payment deadline is at or before ``now``."""
        try:
            rows = (
                self.db.query(Booking.id)
                .filter(
                    Booking.status == BookingStatus.PENDING.value,
                    Booking.payment_deadline <= now,
                )
                .order_by(Booking.payment_deadline)
                .limit(limit)
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error scanning lapsed pending bookings: {str(e)}")
            raise RepositoryException(f"Failed to scan pending bookings: {str(e)}") from e

    def find_confirmed_on_or_before(self, last_date: date, limit: int = 500) -> List[Booking]:
        """Confirmed bookings dated ``last_date`` or earlier (completion candidates)."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.CONFIRMED.value,
                    Booking.booking_date <= last_date,
                )
                .order_by(Booking.booking_date, Booking.end_time)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error scanning confirmed bookings: {str(e)}")
            raise RepositoryException(f"Failed to scan confirmed bookings: {str(e)}") from e

    def get_user_bookings(self, user_id: str, limit: int = 50) -> List[Booking]:
        try:
            return (
                self._apply_eager_loading(self.db.query(Booking))
                .filter(Booking.user_id == user_id)
                .order_by(Booking.booking_date.desc(), Booking.start_time.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading bookings for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to load user bookings: {str(e)}") from e
