"""
Concurrent reservations against a file-backed SQLite store.

Each worker uses its own session and connection, so the field-row claim is
the only thing serializing them.
"""

from datetime import time
import threading

import pytest

from fieldbook.container import ReservationContainer
from fieldbook.core.exceptions import SlotConflictException
from fieldbook.events.publisher import InMemoryTransport
from fieldbook.infrastructure.cache.redis_cache import InMemoryCache
from fieldbook.models import Booking
from tests.conftest import BOOKING_DATE, FakeClock, START_OF_TEST_DAY, make_settings, seed_fields

WORKERS = 6


@pytest.fixture
def file_container(tmp_path):
    clock = FakeClock(START_OF_TEST_DAY)
    settings = make_settings(database_url=f"sqlite:///{tmp_path / 'race.db'}")
    container = ReservationContainer(
        settings,
        cache_backend=InMemoryCache(now_fn=clock),
        transport=InMemoryTransport(),
        now_fn=clock,
    )
    container.create_schema()
    with container.session_scope() as db:
        seed_fields(db)
    yield container
    container.close()


def _race(container, intervals):
    barrier = threading.Barrier(len(intervals))
    outcomes = [None] * len(intervals)

    def worker(index, start, end):
        with container.session_scope() as db:
            service = container.reservation_service(db)
            barrier.wait()
            try:
                booking = service.create_reservation(f"user-{index}", 3, BOOKING_DATE, start, end)
                outcomes[index] = ("ok", booking.id)
            except SlotConflictException as e:
                outcomes[index] = ("conflict", e)
            except Exception as e:  # surfaced by the assertions below
                outcomes[index] = ("error", e)

    threads = [
        threading.Thread(target=worker, args=(i, start, end))
        for i, (start, end) in enumerate(intervals)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_identical_requests_yield_exactly_one_booking(file_container):
    outcomes = _race(file_container, [(time(10, 0), time(11, 0))] * WORKERS)

    kinds = [kind for kind, _ in outcomes]
    assert kinds.count("error") == 0, outcomes
    assert kinds.count("ok") == 1
    assert kinds.count("conflict") == WORKERS - 1

    with file_container.session_scope() as db:
        assert db.query(Booking).filter(Booking.field_id == 3).count() == 1


def test_overlapping_requests_never_double_book(file_container):
    intervals = [
        (time(10, 0), time(11, 0)),
        (time(10, 30), time(11, 30)),
        (time(9, 30), time(10, 30)),
        (time(10, 0), time(12, 0)),
    ]
    outcomes = _race(file_container, intervals)

    assert [kind for kind, _ in outcomes].count("error") == 0, outcomes
    with file_container.session_scope() as db:
        booked = db.query(Booking).filter(Booking.field_id == 3).all()

    booked.sort(key=lambda b: b.start_minutes)
    for earlier, later in zip(booked, booked[1:]):
        assert earlier.end_minutes <= later.start_minutes
    assert len(booked) >= 1


def test_disjoint_requests_all_succeed(file_container):
    intervals = [(time(h, 0), time(h + 1, 0)) for h in range(8, 8 + WORKERS)]
    outcomes = _race(file_container, intervals)

    assert [kind for kind, _ in outcomes] == ["ok"] * WORKERS
