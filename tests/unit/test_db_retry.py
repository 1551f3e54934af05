"""Tests for bounded retries on transient store failures."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from fieldbook.core.exceptions import (
    RepositoryException,
    SlotConflictException,
    StoreTimeoutException,
    StoreUnavailableException,
)
from fieldbook.database import classify_store_error, with_db_retry


def _operational(message: str) -> OperationalError:
    return OperationalError("UPDATE fields", {}, Exception(message))


def test_classifies_lock_timeouts():
    assert classify_store_error(_operational("database is locked")) == "timeout"


def test_classifies_disconnects():
    assert classify_store_error(_operational("server closed the connection")) == "unavailable"


def test_unwraps_repository_exception():
    try:
        raise RepositoryException("wrapped") from _operational("database is locked")
    except RepositoryException as exc:
        assert classify_store_error(exc) == "timeout"


def test_non_transient_errors_are_not_classified():
    assert classify_store_error(_operational("no such table: bookings")) is None
    assert classify_store_error(IntegrityError("INSERT", {}, Exception("unique"))) is None


def test_retries_then_succeeds():
    func = MagicMock(side_effect=[_operational("database is locked"), "ok"])
    sleep = MagicMock()

    assert with_db_retry("op", func, max_attempts=3, sleep=sleep) == "ok"
    assert func.call_count == 2
    sleep.assert_called_once()


def test_exhausted_timeouts_surface_as_store_timeout():
    func = MagicMock(side_effect=_operational("database is locked"))

    with pytest.raises(StoreTimeoutException) as exc_info:
        with_db_retry("create_reservation", func, max_attempts=3, sleep=MagicMock())

    assert func.call_count == 3
    assert exc_info.value.code == "STORE_TIMEOUT"
    assert exc_info.value.to_http_exception().status_code == 503


def test_exhausted_disconnects_surface_as_store_unavailable():
    func = MagicMock(side_effect=_operational("could not connect to server"))

    with pytest.raises(StoreUnavailableException) as exc_info:
        with_db_retry("op", func, max_attempts=2, sleep=MagicMock())

    assert not isinstance(exc_info.value, StoreTimeoutException)


def test_domain_errors_are_not_retried():
    func = MagicMock(side_effect=SlotConflictException(3, "2025-05-01", []))

    with pytest.raises(SlotConflictException):
        with_db_retry("op", func, max_attempts=3, sleep=MagicMock())

    assert func.call_count == 1


def test_non_transient_operational_error_propagates():
    func = MagicMock(side_effect=_operational("no such table: bookings"))

    with pytest.raises(OperationalError):
        with_db_retry("op", func, max_attempts=3, sleep=MagicMock())

    assert func.call_count == 1
