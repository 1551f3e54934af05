"""Tests for the Celery task wrappers and beat schedule."""

from datetime import time, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fieldbook.core.exceptions import StoreTimeoutException, StoreUnavailableException
from fieldbook.services.sweeper_service import SweepResult
from fieldbook.tasks import booking_tasks
from fieldbook.tasks.beat_schedule import get_beat_schedule
from fieldbook.tasks.celery_app import BaseTask, celery_app
from tests.conftest import BOOKING_DATE, make_settings


@pytest.fixture
def installed_container(container):
    booking_tasks.set_container(container)
    yield container
    booking_tasks.set_container(None)


class TestBeatSchedule:
    def test_intervals_follow_settings(self):
        schedule = get_beat_schedule(
            make_settings(expiry_sweep_interval_seconds=15, completion_sweep_interval_seconds=120)
        )

        expiry = schedule["expire-lapsed-reservations"]
        assert expiry["task"] == "fieldbook.tasks.booking_tasks.expire_lapsed_reservations"
        assert expiry["schedule"] == timedelta(seconds=15)
        assert expiry["options"]["queue"] == "bookings"

        completion = schedule["complete-finished-reservations"]
        assert completion["schedule"] == timedelta(seconds=120)

    def test_app_registers_tasks_with_base_task(self):
        assert "fieldbook.tasks.booking_tasks.expire_lapsed_reservations" in celery_app.tasks
        assert celery_app.Task is BaseTask


class TestSweepTasks:
    def test_expiry_task_reports_sweep_result(self):
        container = MagicMock()
        container.sweeper_service.return_value.run_sweep_once.return_value = SweepResult(
            examined=2, transitioned=1, skipped=1
        )
        booking_tasks.set_container(container)
        try:
            result = booking_tasks.expire_lapsed_reservations()
        finally:
            booking_tasks.set_container(None)

        assert result["examined"] == 2
        assert result["transitioned"] == 1
        assert result["skipped"] == 1
        assert "processed_at" in result

    def test_expiry_task_expires_lapsed_booking(self, installed_container, db, reservations, clock):
        booking = reservations.create_reservation("u1", 5, BOOKING_DATE, time(18, 0), time(19, 0))
        clock.advance(minutes=31)

        result = booking_tasks.expire_lapsed_reservations()

        assert result["transitioned"] == 1
        db.expire_all()
        assert reservations.get_booking(booking.id).status == "expired"

    def test_completion_task_delegates_to_sweeper(self):
        container = MagicMock()
        container.sweeper_service.return_value.run_completion_sweep_once.return_value = (
            SweepResult()
        )
        booking_tasks.set_container(container)
        try:
            result = booking_tasks.complete_finished_reservations()
        finally:
            booking_tasks.set_container(None)

        container.sweeper_service.return_value.run_completion_sweep_once.assert_called_once()
        assert result["transitioned"] == 0


class TestGatewayNotificationTask:
    def test_applies_settlement(self, installed_container, reservations):
        booking = reservations.create_reservation(
            "u1", 3, BOOKING_DATE, time(14, 0), time(16, 0), amount=Decimal("400000")
        )
        payment = reservations.payment_repository.get_by_booking_id(booking.id)

        result = booking_tasks.process_gateway_notification(
            {
                "order_id": payment.order_id,
                "transaction_status": "settlement",
                "gross_amount": "400000.00",
            }
        )

        assert result["status"] == "applied"
        assert result["booking_id"] == booking.id
        assert result["booking_status"] == "confirmed"
        assert result["payment_status"] == "paid"

    def test_unknown_transaction_is_dropped(self, installed_container, db):
        result = booking_tasks.process_gateway_notification(
            {"order_id": "PAY-01HNOTREAL", "transaction_status": "settlement"}
        )

        assert result == {"status": "dropped", "code": "UNKNOWN_TRANSACTION"}

    def test_bad_signature_is_dropped(self, installed_container, db):
        installed_container.settings = make_settings(
            gateway_verify_signature=True, gateway_server_key="server-secret"
        )

        result = booking_tasks.process_gateway_notification(
            {"order_id": "PAY-01HNOTREAL", "transaction_status": "settlement", "signature_key": "x"}
        )

        assert result == {"status": "dropped", "code": "INVALID_SIGNATURE"}

    def test_store_outage_is_raised_for_redelivery(self):
        container = MagicMock()
        container.payment_callback_service.return_value.handle_notification.side_effect = (
            StoreTimeoutException("resolve_transaction")
        )
        booking_tasks.set_container(container)
        try:
            with pytest.raises(StoreUnavailableException):
                booking_tasks.process_gateway_notification(
                    {"order_id": "PAY-01HLOCKED", "transaction_status": "settlement"}
                )
        finally:
            booking_tasks.set_container(None)

    def test_store_outage_is_retryable(self):
        assert StoreUnavailableException in BaseTask.autoretry_for


def test_worker_shutdown_closes_container():
    container = MagicMock()
    booking_tasks.set_container(container)

    booking_tasks._close_container()

    container.close.assert_called_once()
    assert booking_tasks._container is None
