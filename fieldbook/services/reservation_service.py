# fieldbook/services/reservation_service.py
"""
Reservation Service

The single authority for booking state changes:

    pending   -> confirmed | cancelled | expired
    confirmed -> cancelled | completed
    cancelled, expired, completed are terminal

Every transition is a compare-and-set on the booking status inside a store
transaction, so concurrent callers (request handlers, gateway callbacks,
sweeps) converge on one outcome without in-process locks. Cache
invalidation and event publication happen only after the commit, and their
failures never undo or fail the transition.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
import ulid

from ..constants.payment_status import SETTLED_PAYMENT_STATUSES, PaymentStatus
from ..core.config import Settings
from ..core.exceptions import (
    FieldUnavailableException,
    IllegalTransitionException,
    NotYetExpirableException,
    ResourceNotFoundException,
    SlotConflictException,
)
from ..core.timezone_utils import format_minutes, minutes_to_time, wall_clock_to_utc
from ..events.booking_events import TRANSITION_EVENT_TYPES, BookingEvent
from ..events.publisher import BookingEventPublisher
from ..models.booking import Booking, BookingStatus, can_transition
from ..models.payment import Payment, build_order_id
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .availability_service import AvailabilityService, ClockValue
from .base import BaseService
from .cache_service import AvailabilityCache, CachedInterval

logger = logging.getLogger(__name__)

PENDING = BookingStatus.PENDING.value
CONFIRMED = BookingStatus.CONFIRMED.value
CANCELLED = BookingStatus.CANCELLED.value
EXPIRED = BookingStatus.EXPIRED.value
COMPLETED = BookingStatus.COMPLETED.value


@dataclass(frozen=True)
class CommittedTransition:
    """What changed, captured inside the transaction for post-commit fan-out."""

    booking_id: str
    user_id: str
    field_id: int
    branch_id: Optional[int]
    booking_date: date
    from_status: Optional[str]
    to_status: str
    at: datetime


def _conflict_details(conflicts: List[CachedInterval]) -> List[Dict[str, str]]:
    return [
        {
            "booking_id": c.booking_id,
            "start_time": format_minutes(c.start_minutes),
            "end_time": format_minutes(c.end_minutes),
            "status": c.status,
        }
        for c in conflicts
    ]


class ReservationService(BaseService):
    """Booking lifecycle: create, confirm, cancel, expire, complete."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        cache: Optional[AvailabilityCache] = None,
        publisher: Optional[BookingEventPublisher] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
        availability: Optional[AvailabilityService] = None,
    ):
        super().__init__(db, now_fn)
        self.settings = settings
        self.retry_attempts = settings.store_retry_attempts
        self.cache = cache
        self.publisher = publisher
        self.availability = availability or AvailabilityService(
            db, settings, cache=cache, now_fn=self._now_fn
        )
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.field_repository = RepositoryFactory.create_field_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    # Helpers

    def _require_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_fresh(booking_id)
        if booking is None:
            raise ResourceNotFoundException("Booking", booking_id)
        return booking

    def _transition(
        self,
        booking: Booking,
        from_statuses: Tuple[str, ...],
        to_status: str,
        now: datetime,
        **values: Any,
    ) -> Tuple[bool, Booking]:
        """Compare-and-set the status; returns (moved, reloaded booking)."""
        moved = self.booking_repository.transition_status(
            booking.id, from_statuses, to_status, updated_at=now, **values
        )
        return moved, self._require_booking(booking.id)

    @staticmethod
    def _record(booking: Booking, from_status: Optional[str], now: datetime) -> CommittedTransition:
        return CommittedTransition(
            booking_id=booking.id,
            user_id=booking.user_id,
            field_id=booking.field_id,
            branch_id=booking.field.branch_id if booking.field is not None else None,
            booking_date=booking.booking_date,
            from_status=from_status,
            to_status=booking.status,
            at=now,
        )

    def _after_commit(self, transition: CommittedTransition) -> None:
        """Invalidate the cache and fan out the event; failures are logged only."""
        prometheus_metrics.record_transition(
            transition.from_status or "none", transition.to_status
        )
        if self.cache is not None:
            if not self.cache.invalidate(transition.field_id, transition.booking_date):
                self.logger.warning(
                    "Availability cache not invalidated for field %s on %s",
                    transition.field_id,
                    transition.booking_date,
                )
        if self.publisher is None:
            return
        event = BookingEvent(
            event_type=TRANSITION_EVENT_TYPES[transition.to_status],
            booking_id=transition.booking_id,
            field_id=transition.field_id,
            status=transition.to_status,
            timestamp=transition.at,
            user_id=transition.user_id,
            branch_id=transition.branch_id,
        )
        try:
            self.publisher.publish_booking_event(event)
        except Exception as e:
            self.logger.error(f"Event fan-out failed for booking {transition.booking_id}: {e}")

    def _ensure_slot_still_free(self, booking: Booking, now: datetime) -> None:
        conflicts = self.availability.find_conflicts(
            booking.field_id,
            booking.booking_date,
            booking.start_minutes,
            booking.end_minutes,
            now=now,
            use_cache=False,
            exclude_booking_id=booking.id,
        )
        if conflicts:
            raise SlotConflictException(
                booking.field_id, booking.booking_date.isoformat(), _conflict_details(conflicts)
            )

    def _settle_payment(
        self,
        booking: Booking,
        settled_amount: Optional[Decimal],
        now: datetime,
        payload: Optional[Dict[str, Any]],
    ) -> Optional[Payment]:
        payment = self.payment_repository.get_by_booking_id(booking.id)
        if payment is None or payment.status in SETTLED_PAYMENT_STATUSES:
            return payment
        amount = Decimal(str(settled_amount)) if settled_amount is not None else payment.amount
        payment.status = (
            PaymentStatus.DP_PAID.value if amount < payment.amount else PaymentStatus.PAID.value
        )
        payment.paid_amount = amount
        payment.paid_at = now
        payment.updated_at = now
        payment.record_callback(payload)
        self.db.flush()
        return payment

    # Queries

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise ResourceNotFoundException("Booking", booking_id)
        return booking

    def get_user_bookings(self, user_id: str, limit: int = 50) -> List[Booking]:
        return self.booking_repository.get_user_bookings(user_id, limit=limit)

    # Transitions

    @BaseService.measure_operation("create_reservation")
    def create_reservation(
        self,
        user_id: str,
        field_id: int,
        booking_date: date,
        start_time: ClockValue,
        end_time: ClockValue,
        *,
        amount: Optional[Decimal] = None,
        payment_method: str = "gateway",
    ) -> Booking:
        """
        Reserve ``[start_time, end_time)`` on a field as a pending booking.

        The availability re-check and the insert share one transaction that
        starts by claiming the field row, so two overlapping requests cannot
        both pass the check. When ``amount`` is given the payment record is
        created in the same transaction.

        Raises:
            InvalidIntervalException: malformed interval or field not bookable
            ResourceNotFoundException: unknown field
            SlotConflictException: interval overlaps an active booking
        """
        start, end = self.availability.validate_interval(booking_date, start_time, end_time)

        def _attempt() -> Tuple[Booking, CommittedTransition]:
            with self.transaction():
                field = self.field_repository.claim_for_reservation(field_id)
                if field is None:
                    raise ResourceNotFoundException("Field", field_id)
                if not field.is_bookable:
                    raise FieldUnavailableException(field_id, field.status)

                now = self.now()
                conflicts = self.availability.find_conflicts(
                    field_id, booking_date, start, end, now=now, use_cache=False
                )
                if conflicts:
                    raise SlotConflictException(
                        field_id, booking_date.isoformat(), _conflict_details(conflicts)
                    )

                deadline = now + timedelta(minutes=self.settings.grace_period_minutes)
                booking = self.booking_repository.create(
                    user_id=user_id,
                    field_id=field_id,
                    booking_date=booking_date,
                    start_time=minutes_to_time(start),
                    end_time=minutes_to_time(end),
                    status=PENDING,
                    created_at=now,
                    updated_at=now,
                    payment_deadline=deadline,
                )
                if amount is not None:
                    payment_id = str(ulid.ULID())
                    order_id = build_order_id(payment_id)
                    booking.payment = self.payment_repository.create(
                        id=payment_id,
                        booking_id=booking.id,
                        user_id=user_id,
                        amount=Decimal(str(amount)),
                        method=payment_method,
                        status=PaymentStatus.PENDING.value,
                        order_id=order_id,
                        external_transaction_id=order_id,
                        expires_at=deadline,
                        created_at=now,
                    )
                transition = CommittedTransition(
                    booking_id=booking.id,
                    user_id=user_id,
                    field_id=field_id,
                    branch_id=field.branch_id,
                    booking_date=booking_date,
                    from_status=None,
                    to_status=PENDING,
                    at=now,
                )
            return booking, transition

        booking, transition = self._with_retry("create_reservation", _attempt)
        self.log_operation(
            "create_reservation", booking_id=booking.id, field_id=field_id, user_id=user_id
        )
        self._after_commit(transition)
        return booking

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self,
        booking_id: str,
        settled_amount: Optional[Decimal] = None,
        *,
        payment_payload: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        """
        Confirm a pending booking after its payment settled.

        Idempotent: confirming an already confirmed booking returns it
        unchanged and publishes nothing. A pending booking whose deadline has
        lapsed is still confirmed unless another booking took the interval in
        the meantime.

        Raises:
            ResourceNotFoundException: unknown booking
            IllegalTransitionException: booking is cancelled, expired or completed
            SlotConflictException: lapsed booking lost its interval
        """

        def _attempt() -> Tuple[Booking, Optional[CommittedTransition]]:
            with self.transaction():
                booking = self._require_booking(booking_id)
                if booking.status == CONFIRMED:
                    return booking, None
                if booking.status != PENDING:
                    raise IllegalTransitionException(booking.id, booking.status, CONFIRMED)

                self.field_repository.claim_for_reservation(booking.field_id)
                now = self.now()
                self._ensure_slot_still_free(booking, now)

                moved, booking = self._transition(
                    booking, (PENDING,), CONFIRMED, now, confirmed_at=now
                )
                if not moved:
                    if booking.status == CONFIRMED:
                        return booking, None
                    raise IllegalTransitionException(booking.id, booking.status, CONFIRMED)

                self._settle_payment(booking, settled_amount, now, payment_payload)
                return booking, self._record(booking, PENDING, now)

        booking, transition = self._with_retry("confirm_payment", _attempt)
        if transition is None:
            self.logger.info(f"Booking {booking_id} already confirmed; nothing to do")
            return booking
        self.log_operation("confirm_payment", booking_id=booking_id)
        self._after_commit(transition)
        return booking

    @BaseService.measure_operation("cancel_reservation")
    def cancel_reservation(
        self, booking_id: str, actor_id: str, reason: Optional[str] = None
    ) -> Booking:
        """
        Cancel a pending or confirmed booking.

        The caller is responsible for checking that ``actor_id`` may cancel it.

        Raises:
            ResourceNotFoundException: unknown booking
            IllegalTransitionException: booking already terminal
        """

        def _attempt() -> Tuple[Booking, CommittedTransition]:
            with self.transaction():
                booking = self._require_booking(booking_id)
                previous = booking.status
                if not can_transition(previous, CANCELLED):
                    raise IllegalTransitionException(booking.id, previous, CANCELLED)

                now = self.now()
                moved, booking = self._transition(
                    booking,
                    (PENDING, CONFIRMED),
                    CANCELLED,
                    now,
                    cancelled_at=now,
                    cancelled_by=actor_id,
                    cancellation_reason=reason,
                )
                if not moved:
                    raise IllegalTransitionException(booking.id, booking.status, CANCELLED)
                return booking, self._record(booking, previous, now)

        booking, transition = self._with_retry("cancel_reservation", _attempt)
        self.log_operation("cancel_reservation", booking_id=booking_id, actor_id=actor_id)
        self._after_commit(transition)
        return booking

    @BaseService.measure_operation("expire_reservation")
    def expire_reservation(self, booking_id: str) -> Booking:
        """
        Expire a pending booking whose payment deadline has passed.

        A still-pending payment is marked failed alongside.

        Raises:
            ResourceNotFoundException: unknown booking
            NotYetExpirableException: booking is not pending or its deadline
                has not elapsed
        """

        def _attempt() -> Tuple[Booking, CommittedTransition]:
            with self.transaction():
                booking = self._require_booking(booking_id)
                if booking.status != PENDING:
                    raise NotYetExpirableException(booking.id, booking.status)
                now = self.now()
                if not booking.is_deadline_elapsed(now):
                    raise NotYetExpirableException(
                        booking.id, booking.status, booking.payment_deadline.isoformat()
                    )

                moved, booking = self._transition(
                    booking, (PENDING,), EXPIRED, now, expired_at=now
                )
                if not moved:
                    raise NotYetExpirableException(booking.id, booking.status)

                payment = self.payment_repository.get_by_booking_id(booking.id)
                if payment is not None and payment.status == PaymentStatus.PENDING.value:
                    payment.status = PaymentStatus.FAILED.value
                    payment.updated_at = now
                    self.db.flush()
                return booking, self._record(booking, PENDING, now)

        booking, transition = self._with_retry("expire_reservation", _attempt)
        self.log_operation("expire_reservation", booking_id=booking_id)
        self._after_commit(transition)
        return booking

    @BaseService.measure_operation("complete_reservation")
    def complete_reservation(self, booking_id: str) -> Booking:
        """
        Mark a confirmed booking completed once its interval has ended.

        Raises:
            ResourceNotFoundException: unknown booking
            IllegalTransitionException: booking not confirmed or not over yet
        """

        def _attempt() -> Tuple[Booking, CommittedTransition]:
            with self.transaction():
                booking = self._require_booking(booking_id)
                if not can_transition(booking.status, COMPLETED):
                    raise IllegalTransitionException(booking.id, booking.status, COMPLETED)
                now = self.now()
                ends_at = wall_clock_to_utc(
                    booking.booking_date, booking.end_minutes, self.settings.facility_timezone
                )
                if now < ends_at:
                    raise IllegalTransitionException(
                        booking.id,
                        booking.status,
                        COMPLETED,
                        message=f"Booking {booking.id} has not ended yet (ends {ends_at.isoformat()})",
                    )

                moved, booking = self._transition(
                    booking, (CONFIRMED,), COMPLETED, now, completed_at=now
                )
                if not moved:
                    raise IllegalTransitionException(booking.id, booking.status, COMPLETED)
                return booking, self._record(booking, CONFIRMED, now)

        booking, transition = self._with_retry("complete_reservation", _attempt)
        self.log_operation("complete_reservation", booking_id=booking_id)
        self._after_commit(transition)
        return booking
