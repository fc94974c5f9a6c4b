"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from quota_bridge.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    FLOW = "flow"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class BridgeMetrics:
    """
    Centralized metrics for the Quota Bridge API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Quota credits (rate by flow/outcome, amounts)
    - Key validation (probe outcomes, batch duration)
    - Downstream pushes (by status)
    - Claims and errors
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "quota_bridge_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "quota_bridge_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "quota_bridge_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "quota_bridge_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Quota Metrics
        # ====================================================================
        self.quota_credits_total = Counter(
            "quota_bridge_quota_credits_total",
            "Quota credit attempts against the gateway",
            [MetricLabels.FLOW, MetricLabels.OUTCOME],
        )

        self.quota_credited_amount = Histogram(
            "quota_bridge_quota_credited_amount",
            "Quota amounts credited",
            [MetricLabels.FLOW],
            buckets=(1e6, 5e6, 1e7, 2e7, 5e7, 1e8, 5e8, 1e9, 5e9),
        )

        self.claims_total = Counter(
            "quota_bridge_claims_total",
            "Daily claims by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Key Metrics
        # ====================================================================
        self.key_probes_total = Counter(
            "quota_bridge_key_probes_total",
            "Liveness probes by result",
            [MetricLabels.OUTCOME],
        )

        self.key_validation_duration_seconds = Histogram(
            "quota_bridge_key_validation_duration_seconds",
            "Duration of a whole validation batch",
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
        )

        self.key_pushes_total = Counter(
            "quota_bridge_key_pushes_total",
            "Downstream pushes by resulting status",
            [MetricLabels.OPERATION, "status"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "quota_bridge_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_credit(self, flow: str, outcome: str, amount: int = 0) -> None:
        """Record a quota credit attempt."""
        self.quota_credits_total.labels(flow=flow, outcome=outcome).inc()
        if outcome == "success" and amount > 0:
            self.quota_credited_amount.labels(flow=flow).observe(amount)

    def record_probe(self, live: bool) -> None:
        """Record one liveness probe result."""
        self.key_probes_total.labels(outcome="live" if live else "dead").inc()

    def record_push(self, operation: str, status: str) -> None:
        """Record a push or retry result."""
        self.key_pushes_total.labels(operation=operation, status=status).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = BridgeMetrics()
