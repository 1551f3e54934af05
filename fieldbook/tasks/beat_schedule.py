# fieldbook/tasks/beat_schedule.py
"""
Celery Beat schedule.

Both sweeps run on fixed intervals taken from settings; the sweep logic
itself does not depend on the cadence.
"""

from datetime import timedelta
from typing import Any, Dict

from ..core.config import Settings


def get_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    return {
        "expire-lapsed-reservations": {
            "task": "fieldbook.tasks.booking_tasks.expire_lapsed_reservations",
            "schedule": timedelta(seconds=settings.expiry_sweep_interval_seconds),
            "options": {
                "queue": "bookings",
                # A missed run is superseded by the next one
                "expires": settings.expiry_sweep_interval_seconds,
            },
        },
        "complete-finished-reservations": {
            "task": "fieldbook.tasks.booking_tasks.complete_finished_reservations",
            "schedule": timedelta(seconds=settings.completion_sweep_interval_seconds),
            "options": {
                "queue": "bookings",
                "expires": settings.completion_sweep_interval_seconds,
            },
        },
    }
