# fieldbook/services/sweeper_service.py
"""
Background sweeps over the booking table.

Each sweep scans in its own short session, then handles every candidate in a
fresh session through the reservation service. A failure on one booking is
logged and counted, never fatal to the rest of the sweep. Sweeps can
overlap with each other and with live traffic: the state machine's
status guards turn a lost race into a skipped booking.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..core.config import Settings
from ..core.exceptions import (
    IllegalTransitionException,
    NotYetExpirableException,
    ResourceNotFoundException,
)
from ..core.timezone_utils import facility_today, utc_now, wall_clock_to_utc
from ..database import with_db_retry
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .reservation_service import ReservationService

logger = logging.getLogger(__name__)

ReservationServiceFactory = Callable[[Session], ReservationService]


@dataclass
class SweepResult:
    examined: int = 0
    transitioned: int = 0
    skipped: int = 0
    failed: int = 0
    booking_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "examined": self.examined,
            "transitioned": self.transitioned,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class SweeperService:
    """Expiry and completion sweeps."""

    def __init__(
        self,
        session_factory: sessionmaker,
        reservation_service_factory: ReservationServiceFactory,
        settings: Settings,
        now_fn: Optional[Callable[[], datetime]] = None,
        batch_size: int = 500,
    ):
        self.session_factory = session_factory
        self.reservation_service_factory = reservation_service_factory
        self.settings = settings
        self._now_fn = now_fn or utc_now
        self.batch_size = batch_size

    def _scan(self, sweep: str, scanner: Callable[[Session], List[str]]) -> List[str]:
        """Run a candidate scan in a fresh session per attempt."""

        def _attempt() -> List[str]:
            db = self.session_factory()
            try:
                return scanner(db)
            finally:
                db.close()

        return with_db_retry(
            f"{sweep}_scan", _attempt, max_attempts=self.settings.store_retry_attempts
        )

    def _apply(
        self,
        sweep: str,
        booking_ids: List[str],
        action: Callable[[ReservationService, str], object],
    ) -> SweepResult:
        result = SweepResult(examined=len(booking_ids))
        for booking_id in booking_ids:
            db = self.session_factory()
            try:
                service = self.reservation_service_factory(db)
                action(service, booking_id)
                result.transitioned += 1
                result.booking_ids.append(booking_id)
            except (NotYetExpirableException, IllegalTransitionException, ResourceNotFoundException) as e:
                # Lost a race with a confirmation, cancellation or another sweep
                result.skipped += 1
                logger.info(f"[SWEEPER] {sweep}: skipped booking {booking_id}: {e.message}")
            except Exception as e:
                result.failed += 1
                logger.error(
                    f"[SWEEPER] {sweep}: failed on booking {booking_id}: {e}",
                    exc_info=True,
                    extra={"booking_id": booking_id, "sweep": sweep},
                )
            finally:
                db.close()

        prometheus_metrics.record_sweep_outcome(sweep, "transitioned", result.transitioned)
        prometheus_metrics.record_sweep_outcome(sweep, "skipped", result.skipped)
        prometheus_metrics.record_sweep_outcome(sweep, "failed", result.failed)
        if result.examined:
            logger.info(f"[SWEEPER] {sweep} finished: {result.to_dict()}")
        return result

    def run_sweep_once(self) -> SweepResult:
        """Expire every pending booking whose payment deadline has passed."""
        now = self._now_fn()
        booking_ids = self._scan(
            "expiry",
            lambda db: RepositoryFactory.create_booking_repository(db).find_lapsed_pending_ids(
                now, limit=self.batch_size
            )
        )
        return self._apply(
            "expiry", booking_ids, lambda service, booking_id: service.expire_reservation(booking_id)
        )

    def run_completion_sweep_once(self) -> SweepResult:
        """Complete confirmed bookings whose interval has ended."""
        now = self._now_fn()
        tz_name = self.settings.facility_timezone

        def _finished(db: Session) -> List[str]:
            candidates = RepositoryFactory.create_booking_repository(
                db
            ).find_confirmed_on_or_before(facility_today(tz_name, now), limit=self.batch_size)
            return [
                booking.id
                for booking in candidates
                if wall_clock_to_utc(booking.booking_date, booking.end_minutes, tz_name) <= now
            ]

        booking_ids = self._scan("completion", _finished)
        return self._apply(
            "completion",
            booking_ids,
            lambda service, booking_id: service.complete_reservation(booking_id),
        )
