"""
Celery tasks for the booking lifecycle.

The expiry and completion sweeps are triggered by beat; gateway
notifications can be handed off to a worker by whatever receives them.
"""

from datetime import datetime, timezone
import logging
import threading
from typing import Any, Callable, Dict, Optional, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult
from celery.signals import worker_process_shutdown

from ..container import ReservationContainer
from ..core.config import settings
from ..core.exceptions import InvalidSignatureException, UnknownTransactionException
from .celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

logger = logging.getLogger(__name__)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


_container: Optional[ReservationContainer] = None
_container_lock = threading.Lock()


def get_container() -> ReservationContainer:
    """Process-wide container, built on first use inside each worker process."""
    global _container
    if _container is None:
        with _container_lock:
            if _container is None:
                _container = ReservationContainer(settings)
    return _container


def set_container(container: Optional[ReservationContainer]) -> None:
    """Install a prebuilt container (used by embedding code and tests)."""
    global _container
    with _container_lock:
        _container = container


@worker_process_shutdown.connect  # type: ignore[misc]
def _close_container(*args: Any, **kwargs: Any) -> None:
    global _container
    with _container_lock:
        if _container is not None:
            _container.close()
            _container = None


@typed_task(name="fieldbook.tasks.booking_tasks.expire_lapsed_reservations")
def expire_lapsed_reservations() -> Dict[str, Any]:
    """Expire pending bookings whose payment deadline has passed."""
    result = get_container().sweeper_service().run_sweep_once()
    return {**result.to_dict(), "processed_at": datetime.now(timezone.utc).isoformat()}


@typed_task(name="fieldbook.tasks.booking_tasks.complete_finished_reservations")
def complete_finished_reservations() -> Dict[str, Any]:
    """Mark confirmed bookings completed once they have ended."""
    result = get_container().sweeper_service().run_completion_sweep_once()
    return {**result.to_dict(), "processed_at": datetime.now(timezone.utc).isoformat()}


@typed_task(name="fieldbook.tasks.booking_tasks.process_gateway_notification")
def process_gateway_notification(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply a raw gateway notification.

    Unknown transactions and bad signatures are logged and dropped; the
    gateway retries delivery on its own schedule.
    """
    container = get_container()
    with container.session_scope() as db:
        service = container.payment_callback_service(db)
        try:
            outcome = service.handle_notification(payload)
        except (UnknownTransactionException, InvalidSignatureException) as e:
            logger.warning(f"[GATEWAY] Dropped notification: {e.message}")
            return {"status": "dropped", "code": e.code}
    return {
        "status": "applied",
        "payment_id": outcome.payment_id,
        "booking_id": outcome.booking_id,
        "payment_status": outcome.payment_status,
        "booking_status": outcome.booking_status,
        "changed": outcome.changed,
        "requires_refund": outcome.requires_refund,
    }
