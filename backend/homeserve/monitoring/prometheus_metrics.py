"""
Prometheus metrics for homeserve.

Service timings come from the @measure_operation decorator. Domain
counters track lock contention, ledger appends, settlement outcomes and
payout requests. Everything lives on a private registry served by
GET /metrics.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "homeserve_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "homeserve_service_operations_total",
    "Service operations by outcome",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "homeserve_errors_total",
    "Failed service operations by exception type",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

resource_locks_total = Counter(
    "homeserve_resource_locks_total",
    "Booking/wallet mutex events",
    ["resource", "action", "status"],
    registry=REGISTRY,
)

ledger_entries_total = Counter(
    "homeserve_ledger_entries_total",
    "Ledger transactions appended",
    ["ledger", "direction", "txn_type"],
    registry=REGISTRY,
)

settlement_events_total = Counter(
    "homeserve_settlement_events_total",
    "Worker credits and customer refunds",
    ["kind", "outcome"],  # kind: worker_credit | refund ; outcome: applied | skipped
    registry=REGISTRY,
)

payout_requests_total = Counter(
    "homeserve_payout_requests_total",
    "Worker withdrawal request lifecycle events",
    ["status"],  # requested | approved | rejected
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recording facade so callers never touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_lock(resource: str, action: str, status: str) -> None:
        resource_locks_total.labels(resource=resource, action=action, status=status).inc()

    @staticmethod
    def record_ledger_entry(ledger: str, direction: str, txn_type: str) -> None:
        ledger_entries_total.labels(ledger=ledger, direction=direction, txn_type=txn_type).inc()

    @staticmethod
    def record_settlement(kind: str, outcome: str) -> None:
        settlement_events_total.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def inc_payout_request(status: str) -> None:
        payout_requests_total.labels(status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Current registry in the Prometheus text exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
