# fieldbook/services/availability_service.py
"""
Availability Service

Answers whether an interval on a field is free, and which slots of the
operating day remain free. Pure reads: nothing here writes to the store.

Intervals are half-open: [s1, e1) and [s2, e2) overlap iff s1 < e2 and
s2 < e1, so a booking ending at 10:00 does not conflict with one starting
at 10:00.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from ..core.config import MINUTES_PER_DAY, Settings, parse_clock
from ..core.exceptions import (
    FieldUnavailableException,
    InvalidIntervalException,
    ResourceNotFoundException,
)
from ..core.timezone_utils import format_minutes, minutes_to_time, time_to_minutes
from ..models.field import Field
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .cache_service import AvailabilityCache, CachedInterval

logger = logging.getLogger(__name__)

ClockValue = Union[time, str]


def intervals_overlap(s1: int, e1: int, s2: int, e2: int) -> bool:
    return s1 < e2 and s2 < e1


@dataclass(frozen=True)
class FreeSlot:
    start_minutes: int
    end_minutes: int

    @property
    def start_time(self) -> time:
        return minutes_to_time(self.start_minutes)

    @property
    def end_time(self) -> time:
        return minutes_to_time(self.end_minutes)

    def to_dict(self) -> Dict[str, str]:
        return {
            "start_time": format_minutes(self.start_minutes),
            "end_time": format_minutes(self.end_minutes),
        }


class AvailabilityService(BaseService):
    """Availability checks for a single field and date."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        cache: Optional[AvailabilityCache] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db, now_fn)
        self.settings = settings
        self.retry_attempts = settings.store_retry_attempts
        self.cache = cache
        self.field_repository = RepositoryFactory.create_field_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    # Validation

    @staticmethod
    def _to_minutes(value: ClockValue, *, is_end: bool) -> int:
        if isinstance(value, str):
            try:
                minutes = parse_clock(value)
            except ValueError as e:
                raise InvalidIntervalException(str(e), details={"value": value}) from e
            return MINUTES_PER_DAY if is_end and minutes == 0 else minutes
        if isinstance(value, time):
            if value.second or value.microsecond:
                raise InvalidIntervalException(
                    "Booking times must be whole minutes", details={"value": value.isoformat()}
                )
            return time_to_minutes(value, is_end=is_end)
        raise InvalidIntervalException(f"Unsupported time value {value!r}")

    def validate_interval(
        self, booking_date: date, start_time: ClockValue, end_time: ClockValue
    ) -> Tuple[int, int]:
        """
        Normalize an interval to minutes after midnight.

        Raises:
            InvalidIntervalException: start is not before end, or the interval
                falls outside the operating day
        """
        if not isinstance(booking_date, date) or isinstance(booking_date, datetime):
            raise InvalidIntervalException(
                "booking_date must be a calendar date", details={"value": str(booking_date)}
            )
        start = self._to_minutes(start_time, is_end=False)
        end = self._to_minutes(end_time, is_end=True)
        if start >= end:
            raise InvalidIntervalException(
                f"Start time {format_minutes(start)} must be before end time {format_minutes(end)}",
                details={"start_time": format_minutes(start), "end_time": format_minutes(end)},
            )
        open_at, close_at = self.settings.operating_window
        if start < open_at or end > close_at:
            raise InvalidIntervalException(
                f"Interval {format_minutes(start)}-{format_minutes(end)} is outside operating "
                f"hours {format_minutes(open_at)}-{format_minutes(close_at)}",
                details={
                    "start_time": format_minutes(start),
                    "end_time": format_minutes(end),
                    "opens": format_minutes(open_at),
                    "closes": format_minutes(close_at),
                },
            )
        return start, end

    def get_bookable_field(self, field_id: int) -> Field:
        field = self.field_repository.get_by_id(field_id, load_relationships=False)
        if field is None:
            raise ResourceNotFoundException("Field", field_id)
        if not field.is_bookable:
            raise FieldUnavailableException(field_id, field.status)
        return field

    # Interval sources

    def _load_intervals(self, field_id: int, booking_date: date) -> List[CachedInterval]:
        bookings = self.booking_repository.get_slot_holding_bookings(field_id, booking_date)
        return [
            CachedInterval(
                booking_id=booking.id,
                start_minutes=booking.start_minutes,
                end_minutes=booking.end_minutes,
                status=booking.status,
                payment_deadline=booking.payment_deadline,
            )
            for booking in bookings
        ]

    def _cached_intervals(self, field_id: int, booking_date: date) -> List[CachedInterval]:
        if self.cache is None:
            return self._load_intervals(field_id, booking_date)

        cached = self.cache.get(field_id, booking_date)
        if cached is not None:
            return cached

        generation = self.cache.current_generation(field_id, booking_date)
        intervals = self._load_intervals(field_id, booking_date)
        self.cache.store(field_id, booking_date, intervals, generation)
        return intervals

    def blocking_intervals(
        self,
        field_id: int,
        booking_date: date,
        *,
        now: Optional[datetime] = None,
        use_cache: bool = True,
        exclude_booking_id: Optional[str] = None,
    ) -> List[CachedInterval]:
        """Intervals that hold their slot at ``now``, sorted by start."""
        now = now or self.now()
        if use_cache:
            intervals = self._cached_intervals(field_id, booking_date)
        else:
            intervals = self._load_intervals(field_id, booking_date)
        return sorted(
            (
                interval
                for interval in intervals
                if interval.holds_slot(now) and interval.booking_id != exclude_booking_id
            ),
            key=lambda interval: (interval.start_minutes, interval.end_minutes),
        )

    def find_conflicts(
        self,
        field_id: int,
        booking_date: date,
        start_minutes: int,
        end_minutes: int,
        *,
        now: Optional[datetime] = None,
        use_cache: bool = True,
        exclude_booking_id: Optional[str] = None,
    ) -> List[CachedInterval]:
        return [
            interval
            for interval in self.blocking_intervals(
                field_id,
                booking_date,
                now=now,
                use_cache=use_cache,
                exclude_booking_id=exclude_booking_id,
            )
            if intervals_overlap(
                start_minutes, end_minutes, interval.start_minutes, interval.end_minutes
            )
        ]

    # Public API

    def _granularity(self, slot_granularity: Optional[int]) -> int:
        if slot_granularity is None:
            return self.settings.slot_granularity_minutes
        if slot_granularity <= 0:
            raise InvalidIntervalException(
                "Slot granularity must be positive", details={"granularity": slot_granularity}
            )
        return slot_granularity

    @BaseService.measure_operation("is_available")
    def is_available(
        self,
        field_id: int,
        booking_date: date,
        start_time: ClockValue,
        end_time: ClockValue,
        *,
        use_cache: bool = True,
    ) -> bool:
        """
        Whether ``[start_time, end_time)`` on ``booking_date`` is free.

        Pass ``use_cache=False`` to read straight from the store.
        """
        start, end = self.validate_interval(booking_date, start_time, end_time)

        def _read() -> bool:
            self.get_bookable_field(field_id)
            return not self.find_conflicts(
                field_id, booking_date, start, end, use_cache=use_cache
            )

        return self._read_with_retry("is_available", _read)

    @BaseService.measure_operation("list_free_slots")
    def list_free_slots(
        self,
        field_id: int,
        booking_date: date,
        slot_granularity: Optional[int] = None,
        *,
        use_cache: bool = True,
    ) -> List[FreeSlot]:
        """
        Maximal free intervals of the operating day.

        The day is split into ``slot_granularity``-minute buckets and every
        blocking interval is subtracted from each bucket exactly, so a
        half-booked bucket still contributes its free half. The free pieces
        are merged into contiguous runs. Result is sorted and non-overlapping,
        with gaps where the field is booked.
        """
        granularity = self._granularity(slot_granularity)

        def _read() -> List[CachedInterval]:
            self.get_bookable_field(field_id)
            return self.blocking_intervals(field_id, booking_date, use_cache=use_cache)

        blocking = self._read_with_retry("list_free_slots", _read)

        slots: List[FreeSlot] = []
        for piece_start, piece_end in self._free_pieces(granularity, blocking):
            if slots and slots[-1].end_minutes == piece_start:
                slots[-1] = FreeSlot(slots[-1].start_minutes, piece_end)
            else:
                slots.append(FreeSlot(piece_start, piece_end))
        return slots

    def describe_day(
        self,
        field_id: int,
        booking_date: date,
        slot_granularity: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Slot board for a day: every bucket with its availability flag."""
        granularity = self._granularity(slot_granularity)

        def _read() -> List[CachedInterval]:
            self.get_bookable_field(field_id)
            return self.blocking_intervals(field_id, booking_date)

        blocking = self._read_with_retry("describe_day", _read)
        board = []
        for bucket_start, bucket_end in self._buckets(granularity):
            holders = [
                i.booking_id
                for i in blocking
                if intervals_overlap(bucket_start, bucket_end, i.start_minutes, i.end_minutes)
            ]
            board.append(
                {
                    "start_time": format_minutes(bucket_start),
                    "end_time": format_minutes(bucket_end),
                    "available": not holders,
                    "booking_ids": holders,
                }
            )
        return board

    def _buckets(self, granularity: int) -> Sequence[Tuple[int, int]]:
        open_at, close_at = self.settings.operating_window
        buckets = []
        cursor = open_at
        while cursor < close_at:
            buckets.append((cursor, min(cursor + granularity, close_at)))
            cursor += granularity
        return buckets

    def _free_pieces(
        self, granularity: int, blocking: Sequence[CachedInterval]
    ) -> List[Tuple[int, int]]:
        # blocking is sorted by start
        pieces = []
        for bucket_start, bucket_end in self._buckets(granularity):
            cursor = bucket_start
            for interval in blocking:
                if interval.end_minutes <= cursor or interval.start_minutes >= bucket_end:
                    continue
                if interval.start_minutes > cursor:
                    pieces.append((cursor, interval.start_minutes))
                cursor = max(cursor, interval.end_minutes)
                if cursor >= bucket_end:
                    break
            if cursor < bucket_end:
                pieces.append((cursor, bucket_end))
        return pieces
