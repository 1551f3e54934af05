# fieldbook/events/publisher.py
"""
Booking event fan-out.

Publishing is fire-and-forget: events describe state that is already
committed, so a transport failure is logged and counted, never raised.
Clients that miss an event re-read current state from the store.

Channels:
- "user:{user_id}"     owner of the booking
- "field:{field_id}"   clients watching a field's schedule
- "branch:{branch_id}" branch staff
- "broadcast"          admin dashboards
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
import json
import logging
import threading
from typing import Any, Callable, DefaultDict, Dict, List, Optional, Protocol

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .booking_events import BookingEvent

logger = logging.getLogger(__name__)


class EventScope(str, Enum):
    USER = "user"
    FIELD = "field"
    BRANCH = "branch"
    BROADCAST = "broadcast"


@dataclass(frozen=True)
class EventTarget:
    scope: EventScope
    identifier: Optional[str] = None

    @property
    def channel(self) -> str:
        if self.scope is EventScope.BROADCAST:
            return EventScope.BROADCAST.value
        return f"{self.scope.value}:{self.identifier}"


class EventTransport(Protocol):
    """Channel-addressed publish primitive."""

    def publish(self, channel: str, message: Dict[str, Any]) -> int:
        """Deliver ``message`` to ``channel``; returns the subscriber count."""
        ...


class RedisPubSubTransport:
    """Publishes JSON events over Redis Pub/Sub."""

    def __init__(self, redis_client: Redis):
        self._redis = redis_client
        self._publish_count = 0

    def publish(self, channel: str, message: Dict[str, Any]) -> int:
        result: int = self._redis.publish(channel, json.dumps(message))
        self._publish_count += 1
        return result

    @property
    def publish_count(self) -> int:
        return self._publish_count


class InMemoryTransport:
    """
    In-process transport for development and tests.

    Keeps every published message per channel and invokes subscribers
    synchronously.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.messages: DefaultDict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._subscribers: DefaultDict[str, List[Callable[[Dict[str, Any]], None]]] = defaultdict(
            list
        )

    def subscribe(self, channel: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        with self._lock:
            self._subscribers[channel].append(callback)

    def publish(self, channel: str, message: Dict[str, Any]) -> int:
        with self._lock:
            self.messages[channel].append(message)
            callbacks = list(self._subscribers.get(channel, ()))
        for callback in callbacks:
            callback(message)
        return len(callbacks)

    def messages_for(self, channel: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.messages.get(channel, ()))

    def clear(self) -> None:
        with self._lock:
            self.messages.clear()


class BookingEventPublisher:
    """Decides who hears about a booking event and hands it to the transport."""

    def __init__(self, transport: EventTransport):
        self.transport = transport

    @staticmethod
    def targets_for(event: BookingEvent) -> List[EventTarget]:
        targets = [
            EventTarget(EventScope.USER, event.user_id),
            EventTarget(EventScope.FIELD, str(event.field_id)),
        ]
        if event.branch_id is not None:
            targets.append(EventTarget(EventScope.BRANCH, str(event.branch_id)))
        targets.append(EventTarget(EventScope.BROADCAST))
        return targets

    def publish(self, event: BookingEvent, target: EventTarget) -> int:
        """Publish to a single scope. Returns 0 when delivery failed."""
        channel = target.channel
        try:
            delivered = self.transport.publish(channel, event.to_dict())
            logger.debug(
                f"[PUBSUB] Published {event.event_type.value} to {channel} "
                f"(subscribers: {delivered})"
            )
            return delivered
        except Exception as e:
            # Fire-and-forget: the transition is already durable
            logger.error(f"[PUBSUB] Failed to publish to {channel}: {e}")
            prometheus_metrics.record_publish_failure(target.scope.value)
            return 0

    def publish_booking_event(self, event: BookingEvent) -> Dict[str, int]:
        """Fan out one event to every interested scope."""
        return {target.channel: self.publish(event, target) for target in self.targets_for(event)}
