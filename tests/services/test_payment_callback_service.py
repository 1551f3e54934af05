"""Tests for gateway callbacks driving payment and booking state."""

from datetime import datetime, time, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from fieldbook.core.exceptions import (
    InvalidSignatureException,
    SlotConflictException,
    StoreTimeoutException,
    UnknownTransactionException,
)
from fieldbook.services.cache_service import AvailabilityCache
from fieldbook.services.payment_callback_service import (
    compute_signature,
    parse_gateway_notification,
)
from tests.conftest import BOOKING_DATE, make_settings, store_locked_error


@pytest.fixture
def paid_booking(reservations):
    booking = reservations.create_reservation(
        "u1", 3, BOOKING_DATE, time(14, 0), time(16, 0), amount=Decimal("400000")
    )
    payment = reservations.payment_repository.get_by_booking_id(booking.id)
    return booking, payment


def _notification(payment, status="settlement", **extra):
    payload = {
        "order_id": payment.order_id,
        "transaction_status": status,
        "status_code": "200",
        "gross_amount": "400000.00",
    }
    payload.update(extra)
    return payload


class TestEndToEnd:
    def test_settlement_confirms_and_blocks_overlaps(
        self, reservations, availability, callbacks, cache_backend, transport, paid_booking
    ):
        booking, payment = paid_booking
        assert booking.status == "pending"
        assert availability.is_available(3, BOOKING_DATE, time(16, 0), time(17, 0))
        cache_key = AvailabilityCache.key_for(3, BOOKING_DATE)
        assert cache_key in cache_backend.keys()

        outcome = callbacks.handle_notification(_notification(payment))

        assert outcome.booking_status == "confirmed"
        assert outcome.payment_status == "paid"
        assert outcome.changed is True
        assert outcome.requires_refund is False
        assert cache_key not in cache_backend.keys()
        assert [m["type"] for m in transport.messages_for("user:u1")] == [
            "slotReserved",
            "bookingConfirmed",
        ]

        with pytest.raises(SlotConflictException):
            reservations.create_reservation("u2", 3, BOOKING_DATE, time(15, 0), time(15, 30))

        third = reservations.create_reservation("u2", 3, BOOKING_DATE, time(16, 0), time(17, 0))
        assert third.status == "pending"


class TestHandleGatewayCallback:
    def test_unknown_transaction_is_rejected(self, callbacks):
        with pytest.raises(UnknownTransactionException):
            callbacks.handle_gateway_callback("PAY-01HNOTREAL", "settlement")

    def test_resolves_by_external_transaction_id(self, callbacks, paid_booking):
        booking, payment = paid_booking

        outcome = callbacks.handle_gateway_callback(payment.external_transaction_id, "settlement")

        assert outcome.booking_id == booking.id
        assert outcome.booking_status == "confirmed"

    def test_failure_leaves_booking_pending(self, callbacks, reservations, paid_booking):
        booking, payment = paid_booking

        outcome = callbacks.handle_notification(_notification(payment, status="deny"))

        assert outcome.payment_status == "failed"
        assert outcome.booking_status == "pending"
        assert reservations.get_booking(booking.id).status == "pending"

    def test_pending_payment_can_still_settle_after_failure(self, callbacks, paid_booking):
        _, payment = paid_booking
        callbacks.handle_notification(_notification(payment, status="expire"))

        outcome = callbacks.handle_notification(_notification(payment))

        assert outcome.payment_status == "paid"
        assert outcome.booking_status == "confirmed"

    def test_duplicate_settlement_is_a_no_op(self, callbacks, transport, paid_booking):
        _, payment = paid_booking
        callbacks.handle_notification(_notification(payment))

        outcome = callbacks.handle_notification(_notification(payment))

        assert outcome.changed is False
        assert outcome.booking_status == "confirmed"
        confirmed = [m for m in transport.messages_for("broadcast") if m["type"] == "bookingConfirmed"]
        assert len(confirmed) == 1

    def test_settled_payment_is_not_downgraded(self, callbacks, reservations, paid_booking):
        booking, payment = paid_booking
        callbacks.handle_notification(_notification(payment))

        outcome = callbacks.handle_notification(_notification(payment, status="expire"))

        assert outcome.changed is False
        assert outcome.payment_status == "paid"
        assert reservations.get_booking(booking.id).status == "confirmed"

    def test_refund_is_recorded_without_touching_booking(self, callbacks, paid_booking):
        _, payment = paid_booking
        callbacks.handle_notification(_notification(payment))

        outcome = callbacks.handle_notification(_notification(payment, status="partial_refund"))

        assert outcome.payment_status == "refunded"
        assert outcome.booking_status == "confirmed"

    def test_partial_amount_is_down_payment(self, callbacks, paid_booking):
        _, payment = paid_booking

        outcome = callbacks.handle_notification(
            _notification(payment, gross_amount="200000.00")
        )

        assert outcome.payment_status == "dp_paid"
        assert outcome.booking_status == "confirmed"

    def test_unknown_status_is_held_as_pending(self, callbacks, paid_booking):
        _, payment = paid_booking

        outcome = callbacks.handle_notification(_notification(payment, status="authorize"))

        assert outcome.payment_status == "pending"
        assert outcome.booking_status == "pending"
        assert outcome.changed is False

    def test_records_transaction_time_and_payload(self, callbacks, paid_booking):
        _, payment = paid_booking

        callbacks.handle_notification(
            _notification(payment, status="pending", transaction_time="2025-05-01 08:05:00")
        )

        # Gateway times are facility-local
        assert payment.transaction_time == datetime(2025, 5, 1, 1, 5, tzinfo=timezone.utc)
        assert payment.last_callback_payload["transaction_status"] == "pending"

    def test_settlement_after_expiry_requires_refund(self, callbacks, reservations, clock, paid_booking):
        booking, payment = paid_booking
        clock.advance(minutes=30)
        reservations.expire_reservation(booking.id)

        outcome = callbacks.handle_notification(_notification(payment))

        assert outcome.requires_refund is True
        assert outcome.payment_status == "paid"
        assert outcome.booking_status == "expired"

    def test_late_settlement_confirms_if_slot_still_free(self, callbacks, clock, paid_booking):
        _, payment = paid_booking
        clock.advance(minutes=45)

        outcome = callbacks.handle_notification(_notification(payment))

        assert outcome.booking_status == "confirmed"
        assert outcome.requires_refund is False


class TestStoreRetries:
    def test_lock_timeout_on_lookup_surfaces_after_retries(self, callbacks, settings, paid_booking):
        _, payment = paid_booking
        with patch.object(
            callbacks.payment_repository,
            "get_by_external_transaction_id",
            side_effect=store_locked_error(),
        ) as lookup:
            with pytest.raises(StoreTimeoutException):
                callbacks.handle_notification(_notification(payment))

        assert lookup.call_count == settings.store_retry_attempts

    def test_lookup_recovers_from_transient_lock(self, callbacks, reservations, paid_booking):
        booking, payment = paid_booking
        with patch.object(
            callbacks.payment_repository,
            "get_by_external_transaction_id",
            side_effect=[store_locked_error(), payment],
        ):
            outcome = callbacks.handle_notification(_notification(payment))

        assert outcome.booking_status == "confirmed"
        assert reservations.get_booking(booking.id).status == "confirmed"

    def test_status_write_is_retried(self, callbacks, paid_booking):
        _, payment = paid_booking
        record = callbacks._record_status
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise store_locked_error()
            return record(*args)

        with patch.object(callbacks, "_record_status", side_effect=flaky):
            outcome = callbacks.handle_notification(_notification(payment, status="deny"))

        assert len(calls) == 2
        assert outcome.payment_status == "failed"


class TestSignatureVerification:
    @pytest.fixture
    def strict_callbacks(self, container, db):
        container.settings = make_settings(
            gateway_verify_signature=True, gateway_server_key="server-secret"
        )
        return container.payment_callback_service(db)

    def test_valid_signature_is_accepted(self, strict_callbacks, paid_booking):
        _, payment = paid_booking
        payload = _notification(payment)
        payload["signature_key"] = compute_signature(
            payment.order_id, "200", "400000.00", "server-secret"
        )

        outcome = strict_callbacks.handle_notification(payload)

        assert outcome.booking_status == "confirmed"

    def test_tampered_amount_is_rejected(self, strict_callbacks, reservations, paid_booking):
        booking, payment = paid_booking
        payload = _notification(payment)
        payload["signature_key"] = compute_signature(
            payment.order_id, "200", "400000.00", "server-secret"
        )
        payload["gross_amount"] = "1.00"

        with pytest.raises(InvalidSignatureException):
            strict_callbacks.handle_notification(payload)
        assert reservations.get_booking(booking.id).status == "pending"

    def test_missing_signature_is_rejected(self, strict_callbacks, paid_booking):
        _, payment = paid_booking

        with pytest.raises(InvalidSignatureException):
            strict_callbacks.handle_notification(_notification(payment))


class TestParseGatewayNotification:
    def test_extracts_reference_and_status(self):
        notification = parse_gateway_notification(
            {"order_id": "PAY-1", "transaction_status": "Settlement"}
        )
        assert notification.external_transaction_id == "PAY-1"
        assert notification.external_status == "settlement"

    def test_challenged_capture_is_held_pending(self):
        notification = parse_gateway_notification(
            {"order_id": "PAY-1", "transaction_status": "capture", "fraud_status": "challenge"}
        )
        assert notification.external_status == "pending"

    def test_denied_capture_is_denied(self):
        notification = parse_gateway_notification(
            {"order_id": "PAY-1", "transaction_status": "capture", "fraud_status": "deny"}
        )
        assert notification.external_status == "deny"

    def test_missing_reference(self):
        with pytest.raises(UnknownTransactionException):
            parse_gateway_notification({"transaction_status": "settlement"})
