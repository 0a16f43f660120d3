"""Prometheus metrics for the reconciliation engine."""

from prometheus_client import Counter, Histogram, start_http_server

reconcile_total = Counter(
    "kubenova_reconcile_total",
    "Reconciliation passes by outcome",
    ["outcome"],
)

stage_failures_total = Counter(
    "kubenova_stage_failures_total",
    "Pipeline stage failures",
    ["stage"],
)

status_conflicts_total = Counter(
    "kubenova_status_conflicts_total",
    "Status writes rejected with a version conflict",
)

resource_writes_total = Counter(
    "kubenova_resource_writes_total",
    "Dependent resource writes",
    ["kind", "action"],
)

reconcile_duration_histogram = Histogram(
    "kubenova_reconcile_duration_seconds",
    "Reconciliation pass duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


def serve(port: int) -> None:
    """Expose /metrics on `port`; 0 disables the endpoint."""
    if port:
        start_http_server(port)
