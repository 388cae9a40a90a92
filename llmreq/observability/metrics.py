"""
Metrics Collection with Prometheus.

Exposes key lifecycle and upstream health metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from llmreq.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    KEY_TYPE = "key_type"
    ERROR_TYPE = "error_type"


class KeyManagerMetrics:
    """
    Centralized metrics for the LLM Request Manager.

    Covers:
    - HTTP requests (rate, duration, errors)
    - LiteLLM calls (rate, duration, outcome per operation)
    - Reconciliation passes and the transitions they apply
    - Key issuance, revocation and limit rejections
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "llmreq_service",
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
            "llmreq_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "llmreq_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "llmreq_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Upstream (LiteLLM) Metrics
        # ====================================================================
        self.upstream_requests_total = Counter(
            "llmreq_upstream_requests_total",
            "Total LiteLLM calls",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.upstream_request_duration_seconds = Histogram(
            "llmreq_upstream_request_duration_seconds",
            "LiteLLM call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliations_total = Counter(
            "llmreq_reconciliations_total",
            "Total reconciliation passes",
            [MetricLabels.OUTCOME],
        )

        self.reconciliation_transitions_total = Counter(
            "llmreq_reconciliation_transitions_total",
            "Shadow record transitions applied by reconciliation",
            ["transition"],
        )

        # ====================================================================
        # Key Lifecycle Metrics
        # ====================================================================
        self.keys_issued_total = Counter(
            "llmreq_keys_issued_total",
            "Total keys issued",
            [MetricLabels.KEY_TYPE, "identity_confirmed"],
        )

        self.keys_revoked_total = Counter(
            "llmreq_keys_revoked_total",
            "Total keys revoked on user request",
            ["upstream_confirmed"],
        )

        self.key_limit_rejections_total = Counter(
            "llmreq_key_limit_rejections_total",
            "Key creations rejected by a per-user ceiling",
            ["limit_kind"],
        )

        self.users_provisioned_total = Counter(
            "llmreq_users_provisioned_total",
            "Users created in LiteLLM by the provisioning gate",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "llmreq_errors_total",
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

    def record_upstream_call(self, operation: str, outcome: str, duration: float) -> None:
        """Record one LiteLLM call."""
        self.upstream_requests_total.labels(operation=operation, outcome=outcome).inc()
        self.upstream_request_duration_seconds.labels(operation=operation).observe(duration)

    def record_transition(self, transition: str, count: int = 1) -> None:
        """Record shadow record transitions applied by a reconciliation pass."""
        if count:
            self.reconciliation_transitions_total.labels(transition=transition).inc(count)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = KeyManagerMetrics()
