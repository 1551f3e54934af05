# fieldbook/services/cache_service.py
"""
Availability cache.

Caches, per (field, date), the intervals held by confirmed and pending
bookings. The store stays authoritative:

- Entries are invalidated right after every committed transition that
  touches the field/date.
- Pending intervals keep their payment deadline and are dropped at read
  time once it passes, so time-based expiry never needs a write.
- Each key has a generation counter bumped on invalidation. An entry built
  from a read that raced with a write carries the old generation and is
  ignored, so a slow rebuild cannot resurrect stale data.

Backend failures are logged and treated as cache misses.
"""

from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..infrastructure.cache.redis_cache import CacheBackend
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedInterval:
    booking_id: str
    start_minutes: int
    end_minutes: int
    status: str
    payment_deadline: Optional[datetime] = None

    def holds_slot(self, now: datetime) -> bool:
        if self.status == "confirmed":
            return True
        return (
            self.status == "pending"
            and self.payment_deadline is not None
            and self.payment_deadline > now
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "start": self.start_minutes,
            "end": self.end_minutes,
            "status": self.status,
            "deadline": self.payment_deadline.isoformat() if self.payment_deadline else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedInterval":
        deadline = data.get("deadline")
        return cls(
            booking_id=data["booking_id"],
            start_minutes=int(data["start"]),
            end_minutes=int(data["end"]),
            status=data["status"],
            payment_deadline=datetime.fromisoformat(deadline) if deadline else None,
        )


class AvailabilityCache:
    """Read-through cache of booked intervals keyed by field and date."""

    def __init__(self, backend: CacheBackend, ttl_seconds: int = 300):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(field_id: int, booking_date: date) -> str:
        return f"fields:{field_id}:availability:{booking_date.isoformat()}"

    @classmethod
    def generation_key_for(cls, field_id: int, booking_date: date) -> str:
        return f"{cls.key_for(field_id, booking_date)}:gen"

    def current_generation(self, field_id: int, booking_date: date) -> Optional[int]:
        """Generation to stamp on an entry about to be rebuilt; None if the backend is down."""
        try:
            value = self.backend.get(self.generation_key_for(field_id, booking_date))
            return int(value) if value is not None else 0
        except Exception as e:
            logger.warning(f"[CACHE] Generation lookup failed for field {field_id}: {e}")
            return None

    def get(self, field_id: int, booking_date: date) -> Optional[List[CachedInterval]]:
        """Cached intervals, or None on a miss (absent, stale generation, or backend error)."""
        key = self.key_for(field_id, booking_date)
        try:
            entry = self.backend.get(key)
            if entry is None:
                prometheus_metrics.record_cache_lookup(hit=False)
                return None
            generation = self.backend.get(self.generation_key_for(field_id, booking_date)) or 0
        except Exception as e:
            logger.warning(f"[CACHE] Read failed for {key}: {e}")
            return None

        if int(entry.get("generation", -1)) != int(generation):
            logger.debug(f"[CACHE] Discarding stale entry for {key}")
            prometheus_metrics.record_cache_lookup(hit=False)
            return None

        prometheus_metrics.record_cache_lookup(hit=True)
        return [CachedInterval.from_dict(item) for item in entry.get("intervals", [])]

    def store(
        self,
        field_id: int,
        booking_date: date,
        intervals: Iterable[CachedInterval],
        generation: Optional[int],
    ) -> None:
        if generation is None:
            return
        key = self.key_for(field_id, booking_date)
        entry = {
            "generation": generation,
            "intervals": [interval.to_dict() for interval in intervals],
        }
        try:
            self.backend.set(key, entry, ttl=self.ttl_seconds)
        except Exception as e:
            logger.warning(f"[CACHE] Write failed for {key}: {e}")

    def invalidate(self, field_id: int, booking_date: date) -> bool:
        """
        Drop the cached intervals for a field/date.

        Returns False when the backend could not be reached; the entry then
        ages out through its TTL.
        """
        key = self.key_for(field_id, booking_date)
        try:
            gen_key = self.generation_key_for(field_id, booking_date)
            self.backend.incr(gen_key)
            # Outlives any entry stamped with an older generation
            self.backend.expire(gen_key, 2 * self.ttl_seconds)
            self.backend.delete(key)
            logger.debug(f"[CACHE] Invalidated {key}")
            return True
        except Exception as e:
            logger.error(f"[CACHE] Invalidation failed for {key}: {e}")
            return False
