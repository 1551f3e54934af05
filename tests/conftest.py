# tests/conftest.py
"""
Shared fixtures.

Tests run against an in-memory SQLite store (StaticPool, one shared
connection), the in-memory cache backend and the in-memory event
transport. Time is driven by a FakeClock so deadlines can be crossed
without sleeping.
"""

import os

# Keep a developer's .env out of the test run
os.environ.setdefault("CI", "true")

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from fieldbook.container import ReservationContainer
from fieldbook.core.config import Settings
from fieldbook.core.exceptions import RepositoryException
from fieldbook.database import Base, create_db_engine
from fieldbook.events.publisher import InMemoryTransport
from fieldbook.infrastructure.cache.redis_cache import InMemoryCache
from fieldbook.models import Branch, Field, FieldStatus, FieldType

# 2025-05-01 08:00 in Asia/Jakarta
START_OF_TEST_DAY = datetime(2025, 5, 1, 1, 0, tzinfo=timezone.utc)
BOOKING_DATE = date(2025, 5, 1)


class FakeClock:
    """Mutable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "database_url": "sqlite://",
        "redis_url": None,
        "grace_period_minutes": 30,
        "slot_granularity_minutes": 60,
        "gateway_verify_signature": False,
        "store_retry_attempts": 3,
    }
    values.update(overrides)
    return Settings(**values)


def store_locked_error() -> RepositoryException:
    """Repository failure wrapping a SQLite lock timeout."""
    exc = RepositoryException("Failed: database is locked")
    exc.__cause__ = OperationalError("SELECT", {}, Exception("database is locked"))
    return exc


def seed_fields(db: Session) -> None:
    """Branch 1 with fields 3 and 5 bookable, 7 under maintenance; branch 2 with field 9."""
    futsal = FieldType(id=1, name="futsal")
    db.add_all(
        [
            futsal,
            Branch(id=1, name="Senayan"),
            Branch(id=2, name="Kemang"),
        ]
    )
    db.flush()
    db.add_all(
        [
            Field(id=3, branch_id=1, type_id=1, name="Court A", day_rate=Decimal("150000"),
                  night_rate=Decimal("200000")),
            Field(id=5, branch_id=1, type_id=1, name="Court B", day_rate=Decimal("150000"),
                  night_rate=Decimal("200000")),
            Field(id=7, branch_id=1, type_id=1, name="Court C", day_rate=Decimal("150000"),
                  night_rate=Decimal("200000"), status=FieldStatus.MAINTENANCE.value),
            Field(id=9, branch_id=2, type_id=1, name="Court D", day_rate=Decimal("120000"),
                  night_rate=Decimal("180000")),
        ]
    )
    db.commit()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_OF_TEST_DAY)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url, settings)
    import fieldbook.models  # noqa: F401

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def cache_backend(clock) -> InMemoryCache:
    return InMemoryCache(now_fn=clock)


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def container(settings, engine, cache_backend, transport, clock) -> ReservationContainer:
    return ReservationContainer(
        settings,
        engine=engine,
        cache_backend=cache_backend,
        transport=transport,
        now_fn=clock,
    )


@pytest.fixture
def db(container) -> Iterator[Session]:
    session = container.session()
    seed_fields(session)
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def reservations(container, db):
    return container.reservation_service(db)


@pytest.fixture
def availability(container, db):
    return container.availability_service(db)


@pytest.fixture
def callbacks(container, db):
    return container.payment_callback_service(db)
