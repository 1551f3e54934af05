# fieldbook/tasks/celery_app.py
"""
Celery application configuration.

Sets up the Celery app with Redis as the broker, configures task
serialization and timezone, and registers the beat schedule.
"""

import logging
import os
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings
from ..core.exceptions import StoreUnavailableException


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> settings.redis_url -> default
    broker_url = (
        os.getenv("CELERY_BROKER_URL") or settings.redis_url or "redis://localhost:6379/0"
    )
    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery("fieldbook", broker=broker_url, backend=result_backend)

    base_config: Dict[str, Any] = {
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "timezone": settings.facility_timezone,
        "enable_utc": True,
        "worker_prefetch_multiplier": 4,
        "worker_max_tasks_per_child": 1000,
        # Sweeps are short; a stuck one must not pile up behind the next beat
        "task_soft_time_limit": 50,
        "task_time_limit": 60,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "task_default_retry_delay": 10,
        "worker_hijack_root_logger": False,
        "broker_transport_options": {"visibility_timeout": 3600},
    }
    celery_app.conf.update(base_config)

    celery_app.conf.imports = ("fieldbook.tasks.booking_tasks",)
    celery_app.conf.task_routes = {
        "fieldbook.tasks.booking_tasks.expire_lapsed_reservations": {"queue": "bookings"},
        "fieldbook.tasks.booking_tasks.complete_finished_reservations": {"queue": "bookings"},
        "fieldbook.tasks.booking_tasks.process_gateway_notification": {"queue": "payments"},
    }

    from .beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings)

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task with retry on transient store failures and lifecycle logging."""

    autoretry_for = (StoreUnavailableException,)
    retry_kwargs = {"max_retries": 3, "countdown": 5}
    retry_backoff = True
    retry_backoff_max = 60
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "retry_count": self.request.retries,
            },
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval: Any, task_id: str, args: Any, kwargs: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.debug(
            f"Task {self.name}[{task_id}] completed successfully",
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_success(retval, task_id, args, kwargs)


# Register BaseTask as default task base for the app
celery_app.Task = cast(Type[Task], BaseTask)
