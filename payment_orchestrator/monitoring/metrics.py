"""
Prometheus metrics for payment orchestration monitoring.

Tracks:
- Payment requests by outcome
- Provider attempts and latency
- Routing decisions by selection method
- Ledger postings and rejections
- Reconciliation discrepancies
- Webhook events
- FX provider failures
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_requests_total = Counter(
    "payment_requests_total",
    "Total number of payment requests",
    ["status", "currency"],
)

payment_processing_duration_seconds = Histogram(
    "payment_processing_duration_seconds",
    "Payment orchestration duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

payment_amount_minor_units = Histogram(
    "payment_amount_minor_units",
    "Payment amounts in minor currency units",
    buckets=(50, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

# Provider metrics
provider_attempts_total = Counter(
    "provider_attempts_total",
    "Total provider attempts",
    ["provider", "outcome"],  # success, retryable_failure, failure
)

provider_attempt_duration_seconds = Histogram(
    "provider_attempt_duration_seconds",
    "Provider call duration in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

provider_health_status = Gauge(
    "provider_health_status",
    "Provider health (0=unhealthy, 1=degraded, 2=healthy)",
    ["provider"],
)

# Routing metrics
routing_decisions_total = Counter(
    "routing_decisions_total",
    "Total routing decisions",
    ["method"],  # rule, score, fallback
)

routing_failures_total = Counter(
    "routing_failures_total",
    "Routing failures",
    ["code"],
)

# Ledger metrics
ledger_entries_recorded_total = Counter(
    "ledger_entries_recorded_total",
    "Total ledger entries written",
    ["currency"],
)

ledger_rejections_total = Counter(
    "ledger_rejections_total",
    "Ledger batches rejected before write",
    ["code"],
)

# Reconciliation metrics
reconciliation_discrepancies_total = Counter(
    "reconciliation_discrepancies_total",
    "Discrepancies found by reconciliation runs",
    ["type"],
)

reconciliation_rate = Gauge(
    "reconciliation_rate",
    "Reconciliation rate of the last run (percent)",
)

reconciliation_duration_seconds = Histogram(
    "reconciliation_duration_seconds",
    "Reconciliation run duration in seconds",
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120),
)

reconciliation_last_run_timestamp = Gauge(
    "reconciliation_last_run_timestamp",
    "Timestamp of last reconciliation run",
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["provider", "status"],  # processed, failed, duplicate
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# FX metrics
fx_provider_failures_total = Counter(
    "fx_provider_failures_total",
    "FX rate provider failures",
    ["provider"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(status: str, currency: str, amount: int) -> None:
        """Record a payment request outcome."""
        payment_requests_total.labels(status=status, currency=currency).inc()
        payment_amount_minor_units.observe(amount)

    @staticmethod
    def record_payment_duration(duration_seconds: float) -> None:
        """Record payment orchestration duration."""
        payment_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_provider_attempt(provider: str, outcome: str, duration_seconds: float) -> None:
        """Record a single provider attempt."""
        provider_attempts_total.labels(provider=provider, outcome=outcome).inc()
        provider_attempt_duration_seconds.labels(provider=provider).observe(duration_seconds)

    @staticmethod
    def set_provider_health(provider: str, status: str) -> None:
        """Set provider health gauge."""
        state_map = {"unhealthy": 0, "degraded": 1, "healthy": 2}
        provider_health_status.labels(provider=provider).set(state_map.get(status, 0))

    @staticmethod
    def record_routing_decision(method: str) -> None:
        """Record a routing decision."""
        routing_decisions_total.labels(method=method).inc()

    @staticmethod
    def record_routing_failure(code: str) -> None:
        """Record a routing failure."""
        routing_failures_total.labels(code=code).inc()

    @staticmethod
    def record_ledger_entries(currency: str, count: int) -> None:
        """Record ledger entries written."""
        ledger_entries_recorded_total.labels(currency=currency).inc(count)

    @staticmethod
    def record_ledger_rejection(code: str) -> None:
        """Record a rejected ledger batch."""
        ledger_rejections_total.labels(code=code).inc()

    @staticmethod
    def record_reconciliation(
        by_type: dict[str, int], rate: float, duration_seconds: float
    ) -> None:
        """Record reconciliation run results."""
        for discrepancy_type, count in by_type.items():
            reconciliation_discrepancies_total.labels(type=discrepancy_type).inc(count)
        reconciliation_rate.set(rate)
        reconciliation_duration_seconds.observe(duration_seconds)
        reconciliation_last_run_timestamp.set(time.time())

    @staticmethod
    def record_webhook_event(provider: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_processed_total.labels(provider=provider, status=status).inc()
        webhook_processing_duration_seconds.labels(provider=provider).observe(duration_seconds)

    @staticmethod
    def record_fx_provider_failure(provider: str) -> None:
        """Record an FX provider failure."""
        fx_provider_failures_total.labels(provider=provider).inc()


# Export shared collector instance
metrics = MetricsCollector()
