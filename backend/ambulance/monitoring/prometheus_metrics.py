"""
Prometheus metrics for the booking lifecycle engine.

Metrics live in a dedicated registry so worker processes can expose them
without colliding with the default process collectors.
"""

from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "ambulance_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

service_operations_total = Counter(
    "ambulance_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "ambulance_booking_transitions_total",
    "Booking status transitions applied",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

booking_transitions_rejected_total = Counter(
    "ambulance_booking_transitions_rejected_total",
    "Booking status transitions refused or lost to a concurrent writer",
    ["to_status", "reason"],
    registry=REGISTRY,
)

sweep_outcomes_total = Counter(
    "ambulance_sweep_outcomes_total",
    "Per-booking outcomes of lifecycle sweeps",
    ["sweep", "rule", "outcome"],
    registry=REGISTRY,
)

payment_reminders_total = Counter(
    "ambulance_payment_reminders_total",
    "Payment reminders by kind and outcome",
    ["kind", "outcome"],
    registry=REGISTRY,
)

resource_releases_total = Counter(
    "ambulance_resource_releases_total",
    "Driver/ambulance release attempts",
    ["kind", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade so call sites never touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str, operation: str, duration: float, status: str = "success"
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        booking_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_rejected_transition(to_status: str, reason: str) -> None:
        booking_transitions_rejected_total.labels(to_status=to_status, reason=reason).inc()

    @staticmethod
    def record_sweep_outcome(sweep: str, rule: str, outcome: str) -> None:
        sweep_outcomes_total.labels(sweep=sweep, rule=rule, outcome=outcome).inc()

    @staticmethod
    def record_reminder(kind: str, outcome: str) -> None:
        payment_reminders_total.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def record_release(kind: str, outcome: str) -> None:
        resource_releases_total.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def get_metrics(registry: Optional[CollectorRegistry] = None) -> bytes:
        return generate_latest(registry or REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
