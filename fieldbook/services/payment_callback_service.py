# fieldbook/services/payment_callback_service.py
"""
Payment Status Bridge

Turns gateway notifications into payment updates and, for settled
payments, a booking confirmation through the reservation service.

- A failed payment attempt never cancels the booking; it stays pending until
  paid again or expired by the sweep.
- Settled payments are never downgraded by late or out-of-order callbacks.
- Duplicate settlement callbacks are no-ops.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from ..constants.payment_status import (
    SETTLED_PAYMENT_STATUSES,
    GatewayStatus,
    PaymentStatus,
    map_gateway_status,
)
from ..core.config import Settings
from ..core.exceptions import (
    IllegalTransitionException,
    InvalidSignatureException,
    SlotConflictException,
    UnknownTransactionException,
)
from ..core.timezone_utils import get_facility_timezone
from ..models.payment import Payment
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .reservation_service import ReservationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayNotification:
    """Normalized inbound gateway callback."""

    external_transaction_id: str
    external_status: str
    raw_payload: Dict[str, Any]


@dataclass(frozen=True)
class CallbackOutcome:
    payment_id: str
    booking_id: str
    payment_status: str
    booking_status: str
    changed: bool
    requires_refund: bool = False


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning(f"[GATEWAY] Unparseable gross_amount {value!r}")
        return None


def parse_gateway_notification(payload: Mapping[str, Any]) -> GatewayNotification:
    """
    Extract the transaction reference and status from a raw notification body.

    The order id is the reference payments are created with. A captured card
    payment flagged ``challenge`` by fraud screening is held as pending, and
    one flagged ``deny`` as denied.
    """
    reference = payload.get("order_id") or payload.get("transaction_id")
    if not reference:
        raise UnknownTransactionException("<missing>")

    status = str(payload.get("transaction_status") or "").strip().lower()
    fraud_status = payload.get("fraud_status")
    if status in (GatewayStatus.CAPTURE.value, GatewayStatus.SETTLEMENT.value):
        if fraud_status == "challenge":
            status = GatewayStatus.PENDING.value
        elif fraud_status == "deny":
            status = GatewayStatus.DENY.value
    return GatewayNotification(
        external_transaction_id=str(reference),
        external_status=status,
        raw_payload=dict(payload),
    )


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA-512 over order id, status code, gross amount and server key."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


class PaymentCallbackService(BaseService):
    """Applies gateway callbacks to payments and their bookings."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        reservation_service: ReservationService,
    ):
        super().__init__(db, reservation_service._now_fn)
        self.settings = settings
        self.retry_attempts = settings.store_retry_attempts
        self.reservation_service = reservation_service
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    def verify_signature(self, raw_payload: Optional[Mapping[str, Any]]) -> None:
        if not self.settings.gateway_verify_signature:
            return
        payload = raw_payload or {}
        order_id = str(payload.get("order_id", ""))
        expected = compute_signature(
            order_id,
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            self.settings.gateway_server_key.get_secret_value(),
        )
        provided = str(payload.get("signature_key", ""))
        if not provided or not hmac.compare_digest(expected, provided):
            logger.warning(f"[GATEWAY] Invalid signature for order {order_id}")
            raise InvalidSignatureException(order_id)

    def _transaction_time(self, payload: Mapping[str, Any]) -> Optional[datetime]:
        raw = payload.get("transaction_time")
        if not raw:
            return None
        try:
            local = datetime.strptime(str(raw), "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
        return get_facility_timezone(self.settings.facility_timezone).localize(local)

    def _resolve(self, external_transaction_id: str) -> Payment:
        payment = self.payment_repository.get_by_external_transaction_id(external_transaction_id)
        if payment is None:
            logger.warning(
                f"[GATEWAY] Dropping callback for unknown transaction {external_transaction_id}"
            )
            raise UnknownTransactionException(external_transaction_id)
        return payment

    def _record_status(
        self, payment_id: str, status: PaymentStatus, payload: Mapping[str, Any]
    ) -> bool:
        """Persist a non-confirming status; settled payments are left alone."""
        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id, load_relationships=False)
            if payment.status in SETTLED_PAYMENT_STATUSES and status != PaymentStatus.REFUNDED:
                logger.info(
                    f"[GATEWAY] Ignoring {status.value} for settled payment {payment.id}"
                )
                return False
            changed = payment.status != status.value
            payment.status = status.value
            payment.updated_at = self.now()
            transaction_time = self._transaction_time(payload)
            if transaction_time is not None:
                payment.transaction_time = transaction_time
            payment.record_callback(dict(payload) if payload else None)
            return changed

    def _current_statuses(self, payment_id: str, booking_id: str) -> Tuple[str, str]:
        def _read() -> Tuple[str, str]:
            payment = self.payment_repository.get_by_id(payment_id, load_relationships=False)
            booking = self.reservation_service.get_booking(booking_id)
            return payment.status, booking.status

        return self._read_with_retry("callback_outcome", _read)

    @BaseService.measure_operation("handle_gateway_callback")
    def handle_gateway_callback(
        self,
        external_transaction_id: str,
        external_status: str,
        raw_payload: Optional[Mapping[str, Any]] = None,
    ) -> CallbackOutcome:
        """
        Apply one gateway callback.

        Store reads and writes are retried on transient failures; once the
        retries run out the failure surfaces as StoreUnavailableException so
        the caller can redeliver the notification.

        Raises:
            InvalidSignatureException: signature verification is enabled and fails
            UnknownTransactionException: no payment matches the reference
        """
        self.verify_signature(raw_payload)
        payload: Mapping[str, Any] = raw_payload or {}
        mapped = map_gateway_status(external_status)
        payment = self._read_with_retry(
            "resolve_transaction", lambda: self._resolve(external_transaction_id)
        )
        payment_id, booking_id = payment.id, payment.booking_id
        was_settled = payment.status in SETTLED_PAYMENT_STATUSES
        logger.info(
            f"[GATEWAY] {external_transaction_id}: {external_status!r} -> {mapped.value}",
            extra={"payment_id": payment_id, "booking_id": booking_id},
        )

        if mapped not in SETTLED_PAYMENT_STATUSES:
            changed = self._with_retry(
                "record_payment_status", lambda: self._record_status(payment_id, mapped, payload)
            )
            payment_status, booking_status = self._current_statuses(payment_id, booking_id)
            return CallbackOutcome(
                payment_id=payment_id,
                booking_id=booking_id,
                payment_status=payment_status,
                booking_status=booking_status,
                changed=changed,
            )

        try:
            booking = self.reservation_service.confirm_payment(
                booking_id,
                settled_amount=_parse_amount(payload.get("gross_amount")),
                payment_payload=dict(payload) if payload else None,
            )
        except (IllegalTransitionException, SlotConflictException) as e:
            # Funds were captured for a booking that can no longer be confirmed
            logger.error(
                f"[GATEWAY] Payment {payment_id} settled but booking {booking_id} "
                f"was not confirmed: {e.message}; refund required"
            )
            self._with_retry(
                "record_payment_status",
                lambda: self._record_status(payment_id, PaymentStatus.PAID, payload),
            )
            _, booking_status = self._current_statuses(payment_id, booking_id)
            return CallbackOutcome(
                payment_id=payment_id,
                booking_id=booking_id,
                payment_status=PaymentStatus.PAID.value,
                booking_status=booking_status,
                changed=not was_settled,
                requires_refund=True,
            )

        payment_status, _ = self._current_statuses(payment_id, booking_id)
        return CallbackOutcome(
            payment_id=payment_id,
            booking_id=booking.id,
            payment_status=payment_status,
            booking_status=booking.status,
            changed=not was_settled,
        )

    def handle_notification(self, payload: Mapping[str, Any]) -> CallbackOutcome:
        """Parse a raw gateway notification body and apply it."""
        notification = parse_gateway_notification(payload)
        return self.handle_gateway_callback(
            notification.external_transaction_id,
            notification.external_status,
            notification.raw_payload,
        )
