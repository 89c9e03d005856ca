"""
Tests for lifecycle Prometheus metrics.
"""

import pytest

from ambulance.core.exceptions import InvalidStateTransition
from ambulance.models import BookingStatus
from ambulance.monitoring.prometheus_metrics import REGISTRY, prometheus_metrics
from ambulance.services.booking_state_machine import BookingStateMachine
from tests.helpers.factories import make_booking


def _sample(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestLifecycleMetrics:
    def test_exposition_uses_text_format(self):
        prometheus_metrics.record_sweep_outcome("auto_cancellation", "payment_expiry", "skipped")

        body = prometheus_metrics.get_metrics().decode()

        assert "ambulance_sweep_outcomes_total" in body
        assert prometheus_metrics.get_content_type().startswith("text/plain")

    def test_transition_increments_counter(self, db, clock, notifier):
        booking = make_booking(db, status=BookingStatus.PENDING.value)
        labels = {"from_status": "pending", "to_status": "confirmed"}
        before = _sample("ambulance_booking_transitions_total", labels)

        BookingStateMachine(db, notifier=notifier, clock=clock).confirm(booking.id)

        assert _sample("ambulance_booking_transitions_total", labels) == before + 1

    def test_rejected_transition_is_counted(self, db, clock, notifier):
        booking = make_booking(db, status=BookingStatus.COMPLETED.value)
        labels = {"to_status": "cancelled", "reason": "invalid"}
        before = _sample("ambulance_booking_transitions_rejected_total", labels)

        machine = BookingStateMachine(db, notifier=notifier, clock=clock)
        with pytest.raises(InvalidStateTransition):
            machine.cancel(booking.id)

        assert _sample("ambulance_booking_transitions_rejected_total", labels) == before + 1

    def test_service_keeps_per_instance_timings(self, db, clock, notifier):
        booking = make_booking(db, status=BookingStatus.PENDING.value)
        machine = BookingStateMachine(db, notifier=notifier, clock=clock)

        machine.confirm(booking.id)

        stats = machine.get_metrics()["confirm_booking"]
        assert stats["count"] == 1
        assert stats["success_count"] == 1
        assert stats["avg_time"] >= 0
