"""Internal payment statuses and the gateway status mapping table."""

from __future__ import annotations

from enum import Enum
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class PaymentStatus(str, Enum):
    """Internal payment status taxonomy."""

    PENDING = "pending"
    PAID = "paid"
    DP_PAID = "dp_paid"  # down payment settled
    FAILED = "failed"
    REFUNDED = "refunded"


SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.DP_PAID})


class GatewayStatus(str, Enum):
    """Transaction status vocabulary reported by the payment gateway."""

    CAPTURE = "capture"
    SETTLEMENT = "settlement"
    PENDING = "pending"
    DENY = "deny"
    EXPIRE = "expire"
    CANCEL = "cancel"
    FAILURE = "failure"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"


GATEWAY_TO_PAYMENT_STATUS = {
    GatewayStatus.CAPTURE: PaymentStatus.PAID,
    GatewayStatus.SETTLEMENT: PaymentStatus.PAID,
    GatewayStatus.PENDING: PaymentStatus.PENDING,
    GatewayStatus.DENY: PaymentStatus.FAILED,
    GatewayStatus.EXPIRE: PaymentStatus.FAILED,
    GatewayStatus.CANCEL: PaymentStatus.FAILED,
    GatewayStatus.FAILURE: PaymentStatus.FAILED,
    GatewayStatus.REFUND: PaymentStatus.REFUNDED,
    GatewayStatus.PARTIAL_REFUND: PaymentStatus.REFUNDED,
}


def map_gateway_status(external_status: Optional[str]) -> PaymentStatus:
    """Map a gateway transaction status to the internal payment status."""
    if not external_status:
        return PaymentStatus.PENDING
    try:
        gateway_status = GatewayStatus(external_status.strip().lower())
    except ValueError:
        logger.warning("[GATEWAY] Unknown transaction status %r, treating as pending", external_status)
        return PaymentStatus.PENDING
    return GATEWAY_TO_PAYMENT_STATUS[gateway_status]
