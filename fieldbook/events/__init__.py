"""Booking events and their fan-out to subscribers."""

from .booking_events import TRANSITION_EVENT_TYPES, BookingEvent, BookingEventType
from .publisher import (
    BookingEventPublisher,
    EventScope,
    EventTransport,
    InMemoryTransport,
    RedisPubSubTransport,
)

__all__ = [
    "BookingEvent",
    "BookingEventPublisher",
    "BookingEventType",
    "EventScope",
    "EventTransport",
    "InMemoryTransport",
    "RedisPubSubTransport",
    "TRANSITION_EVENT_TYPES",
]
