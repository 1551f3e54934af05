# fieldbook/container.py
"""
Composition root.

Builds the store engine, cache backend and event transport from settings,
hands out services bound to a session, and releases every connection on
``close()``. Components never create their own clients.
"""

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Callable, Iterator, Optional

from redis import Redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .core.config import Settings
from .core.timezone_utils import utc_now
from .database import Base, create_db_engine, create_session_factory
from .events.publisher import (
    BookingEventPublisher,
    EventTransport,
    InMemoryTransport,
    RedisPubSubTransport,
)
from .infrastructure.cache.redis_cache import CacheBackend, InMemoryCache, RedisCache
from .services.availability_service import AvailabilityService
from .services.cache_service import AvailabilityCache
from .services.payment_callback_service import PaymentCallbackService
from .services.reservation_service import ReservationService
from .services.sweeper_service import SweeperService

logger = logging.getLogger(__name__)


class ReservationContainer:
    """Owns long-lived handles and wires services together."""

    def __init__(
        self,
        settings: Settings,
        *,
        engine: Optional[Engine] = None,
        cache_backend: Optional[CacheBackend] = None,
        transport: Optional[EventTransport] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.now_fn = now_fn or utc_now
        self._redis: Optional[Redis] = None

        self.engine = engine or create_db_engine(settings.database_url, settings)
        self.session_factory = create_session_factory(self.engine)

        if (cache_backend is None or transport is None) and settings.redis_url:
            self._redis = Redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
            )
            logger.info("Using Redis for availability cache and event fan-out")
        if cache_backend is None:
            cache_backend = (
                RedisCache(self._redis) if self._redis is not None else InMemoryCache(self.now_fn)
            )
        if transport is None:
            transport = (
                RedisPubSubTransport(self._redis) if self._redis is not None else InMemoryTransport()
            )

        self.cache_backend = cache_backend
        self.transport = transport
        self.availability_cache = AvailabilityCache(
            cache_backend, ttl_seconds=settings.availability_cache_ttl_seconds
        )
        self.publisher = BookingEventPublisher(transport)

    def create_schema(self) -> None:
        from . import models  # noqa: F401  registers tables

        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that is rolled back if still dirty on error and always closed."""
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def availability_service(self, db: Session) -> AvailabilityService:
        return AvailabilityService(
            db, self.settings, cache=self.availability_cache, now_fn=self.now_fn
        )

    def reservation_service(self, db: Session) -> ReservationService:
        return ReservationService(
            db,
            self.settings,
            cache=self.availability_cache,
            publisher=self.publisher,
            now_fn=self.now_fn,
        )

    def payment_callback_service(self, db: Session) -> PaymentCallbackService:
        return PaymentCallbackService(db, self.settings, self.reservation_service(db))

    def sweeper_service(self) -> SweeperService:
        return SweeperService(
            self.session_factory,
            self.reservation_service,
            self.settings,
            now_fn=self.now_fn,
        )

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()
            self._redis = None
        self.engine.dispose()
        logger.info("Reservation container closed")
