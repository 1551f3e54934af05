"""
Celery tasks package.

Contains the recurring booking sweeps and gateway notification processing.
"""

from .booking_tasks import (
    complete_finished_reservations,
    expire_lapsed_reservations,
    process_gateway_notification,
)
from .celery_app import BaseTask, celery_app

__all__ = [
    "BaseTask",
    "celery_app",
    "complete_finished_reservations",
    "expire_lapsed_reservations",
    "process_gateway_notification",
]
