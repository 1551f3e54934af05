"""
Prometheus metrics for the reservation engine.

Metrics live on a private registry so embedding applications can expose
them alongside their own without name clashes.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "fieldbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "fieldbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "fieldbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "fieldbook_booking_transitions_total",
    "Committed booking state transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

sweep_bookings_total = Counter(
    "fieldbook_sweep_bookings_total",
    "Bookings examined by background sweeps, by outcome",
    ["sweep", "outcome"],
    registry=REGISTRY,
)

event_publish_failures_total = Counter(
    "fieldbook_event_publish_failures_total",
    "Event publications that failed after the write committed",
    ["scope"],
    registry=REGISTRY,
)

availability_cache_lookups_total = Counter(
    "fieldbook_availability_cache_lookups_total",
    "Availability cache lookups",
    ["result"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin static facade used by services and tasks."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'ReservationService')
            operation: Operation/method name (e.g., 'create_reservation')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        booking_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_sweep_outcome(sweep: str, outcome: str, count: int = 1) -> None:
        if count:
            sweep_bookings_total.labels(sweep=sweep, outcome=outcome).inc(count)

    @staticmethod
    def record_publish_failure(scope: str) -> None:
        event_publish_failures_total.labels(scope=scope).inc()

    @staticmethod
    def record_cache_lookup(hit: bool) -> None:
        availability_cache_lookups_total.labels(result="hit" if hit else "miss").inc()

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
