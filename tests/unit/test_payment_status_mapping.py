"""Tests for the gateway -> internal payment status mapping."""

import pytest

from fieldbook.constants.payment_status import (
    GATEWAY_TO_PAYMENT_STATUS,
    GatewayStatus,
    PaymentStatus,
    map_gateway_status,
)


@pytest.mark.parametrize(
    "external, expected",
    [
        ("settlement", PaymentStatus.PAID),
        ("capture", PaymentStatus.PAID),
        ("pending", PaymentStatus.PENDING),
        ("expire", PaymentStatus.FAILED),
        ("cancel", PaymentStatus.FAILED),
        ("deny", PaymentStatus.FAILED),
        ("failure", PaymentStatus.FAILED),
        ("refund", PaymentStatus.REFUNDED),
        ("SETTLEMENT", PaymentStatus.PAID),
    ],
)
def test_maps_gateway_vocabulary(external, expected):
    assert map_gateway_status(external) is expected


def test_every_gateway_status_is_mapped():
    assert set(GATEWAY_TO_PAYMENT_STATUS) == set(GatewayStatus)


def test_unknown_status_is_treated_as_pending(caplog):
    assert map_gateway_status("authorize") is PaymentStatus.PENDING
    assert "Unknown transaction status" in caplog.text


def test_missing_status_is_pending():
    assert map_gateway_status(None) is PaymentStatus.PENDING
