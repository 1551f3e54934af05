"""Tests for the booking state table and interval helpers."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from fieldbook.models import ALLOWED_TRANSITIONS, Booking, BookingStatus, can_transition

NOW = datetime(2025, 5, 1, 1, 0, tzinfo=timezone.utc)


def _booking(status="pending", start=time(10, 0), end=time(11, 0), deadline_in=30):
    return Booking(
        id="01HX0000000000000000000000",
        user_id="u1",
        field_id=3,
        booking_date=date(2025, 5, 1),
        start_time=start,
        end_time=end,
        status=status,
        created_at=NOW,
        payment_deadline=NOW + timedelta(minutes=deadline_in),
    )


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("pending", "confirmed", True),
        ("pending", "cancelled", True),
        ("pending", "expired", True),
        ("pending", "completed", False),
        ("confirmed", "cancelled", True),
        ("confirmed", "completed", True),
        ("confirmed", "expired", False),
        ("confirmed", "pending", False),
        ("expired", "cancelled", False),
        ("cancelled", "confirmed", False),
        ("completed", "cancelled", False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses_have_no_exits():
    for status in (BookingStatus.CANCELLED, BookingStatus.EXPIRED, BookingStatus.COMPLETED):
        assert ALLOWED_TRANSITIONS[status.value] == frozenset()


def test_unknown_status_cannot_transition():
    assert can_transition("archived", "confirmed") is False


class TestBookingHelpers:
    def test_minutes(self):
        booking = _booking(start=time(22, 0), end=time(0, 0))
        assert booking.start_minutes == 1320
        assert booking.end_minutes == 1440

    def test_pending_holds_until_deadline(self):
        booking = _booking()
        assert booking.holds_slot(NOW + timedelta(minutes=29))
        assert not booking.holds_slot(NOW + timedelta(minutes=30))

    def test_confirmed_always_holds(self):
        assert _booking(status="confirmed", deadline_in=-60).holds_slot(NOW)

    def test_terminal_never_holds(self):
        for status in ("cancelled", "expired", "completed"):
            assert not _booking(status=status).holds_slot(NOW)

    def test_deadline_elapsed_is_inclusive(self):
        booking = _booking()
        assert not booking.is_deadline_elapsed(NOW + timedelta(minutes=29, seconds=59))
        assert booking.is_deadline_elapsed(NOW + timedelta(minutes=30))

    def test_payment_id_without_payment(self):
        assert _booking().payment_id is None
