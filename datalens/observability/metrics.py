"""Prometheus metrics for the audit ledger."""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from datalens.config.models.observability import MetricsConfig

AUDIT_RECORDS_APPENDED = Counter(
    "datalens_audit_records_appended_total",
    "Audit records durably appended to the ledger",
    labelnames=["chain_scope", "resource_type"],
)

AUDIT_DUPLICATE_DELIVERIES = Counter(
    "datalens_audit_duplicate_deliveries_total",
    "Redelivered events collapsed by the idempotency key",
)

AUDIT_APPEND_FAILURES = Counter(
    "datalens_audit_append_failures_total",
    "Ledger appends that failed after all retries",
    labelnames=["error_type"],
)

AUDIT_FORK_CONFLICTS = Counter(
    "datalens_audit_fork_conflicts_total",
    "Appends rejected because another record already claimed the previous hash",
)

AUDIT_APPEND_LATENCY = Histogram(
    "datalens_audit_append_latency_seconds",
    "Latency from link to durable append",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

AUDIT_CHAIN_SEQUENCE = Gauge(
    "datalens_audit_chain_sequence",
    "Sequence number of the most recently linked record",
    labelnames=["chain_id"],
)

AUDIT_CHAIN_GAPS = Gauge(
    "datalens_audit_chain_gaps",
    "Known runs of missing records below the chain head",
    labelnames=["chain_id"],
)

AUDIT_INTEGRITY_VIOLATIONS = Counter(
    "datalens_audit_integrity_violations_total",
    "Broken chains detected by verification runs",
    labelnames=["chain_id"],
)


def start_metrics_server(config: MetricsConfig) -> bool:
    """Expose the default registry on ``config.port`` if metrics are enabled.

    Returns:
        True if the HTTP exporter was started
    """
    if not config.enabled:
        return False
    start_http_server(config.port)
    return True
