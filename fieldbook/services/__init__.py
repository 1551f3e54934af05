from .availability_service import AvailabilityService, FreeSlot
from .base import BaseService
from .cache_service import AvailabilityCache, CachedInterval
from .payment_callback_service import (
    CallbackOutcome,
    GatewayNotification,
    PaymentCallbackService,
    parse_gateway_notification,
)
from .reservation_service import ReservationService
from .sweeper_service import SweeperService, SweepResult

__all__ = [
    "AvailabilityCache",
    "AvailabilityService",
    "BaseService",
    "CachedInterval",
    "CallbackOutcome",
    "FreeSlot",
    "GatewayNotification",
    "PaymentCallbackService",
    "ReservationService",
    "SweepResult",
    "SweeperService",
    "parse_gateway_notification",
]
