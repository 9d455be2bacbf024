"""
Prometheus metrics for the registration engine.

Service timings come from the @measure_operation decorator; registration
outcomes, slot lock activity and side-channel failures are recorded by the
components that own them.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "registrations_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "registrations_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "registrations_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

registration_outcomes_total = Counter(
    "registrations_outcomes_total",
    "Registration workflow outcomes",
    ["workflow", "outcome"],  # workflow: create|cancel, outcome: success|validation|conflict|...
    registry=REGISTRY,
)

registration_lock_total = Counter(
    "registrations_slot_lock_total",
    "Slot lock acquire/release events",
    ["action", "result"],
    registry=REGISTRY,
)

side_channel_failures_total = Counter(
    "registrations_side_channel_failures_total",
    "Best-effort handler failures (email, audit) by event type",
    ["event_type", "handler"],
    registry=REGISTRY,
)

event_outbox_dead_letters_total = Counter(
    "registrations_event_outbox_dead_letters_total",
    "Outbox jobs given up on after the last retry",
    ["event_type", "handler"],
    registry=REGISTRY,
)

_METRICS_CACHE_TTL_SECONDS = 1.0


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None

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
            service: Service name (e.g., 'RegistrationService')
            operation: Operation/method name (e.g., 'process_registration')
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
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_registration_outcome(workflow: str, outcome: str) -> None:
        registration_outcomes_total.labels(workflow=workflow, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_registration_lock(action: str, result: str) -> None:
        registration_lock_total.labels(action=action, result=result).inc()

    @staticmethod
    def record_side_channel_failure(event_type: str, handler: str) -> None:
        side_channel_failures_total.labels(event_type=event_type, handler=handler).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_event_dead_letter(event_type: str, handler: str) -> None:
        event_outbox_dead_letters_total.labels(event_type=event_type, handler=handler).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        now = monotonic()
        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > _METRICS_CACHE_TTL_SECONDS:
                payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_payload = payload
                PrometheusMetrics._cache_ts = now
        return payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
