"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    generate_latest,
    start_http_server,
)

from leasequeue.constants import (
    METRIC_HEARTBEATS,
    METRIC_LEASES_RECLAIMED,
    METRIC_MESSAGES_CLAIMED,
    METRIC_MESSAGES_COMPLETED,
    METRIC_MESSAGES_REQUEUED,
    METRIC_MESSAGES_SENT,
    METRIC_SEND_EXHAUSTED,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the queue.

    Collects metrics for:
    - Sends (inserted or flagged for redelivery) and send exhaustion
    - Claims, heartbeats, requeues and completions
    - Stale leases reclaimed
    - Store errors by operation
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.messages_sent = Counter(
            METRIC_MESSAGES_SENT,
            "Total number of messages sent",
            ["topics", "outcome"],
            registry=self._registry,
        )

        self.send_exhausted = Counter(
            METRIC_SEND_EXHAUSTED,
            "Total number of sends that ran out of insert/update cycles",
            registry=self._registry,
        )

        self.messages_claimed = Counter(
            METRIC_MESSAGES_CLAIMED,
            "Total number of messages claimed",
            ["topics"],
            registry=self._registry,
        )

        # result: renewed or lost
        self.heartbeats = Counter(
            METRIC_HEARTBEATS,
            "Total number of lease heartbeats",
            ["result"],
            registry=self._registry,
        )

        self.messages_requeued = Counter(
            METRIC_MESSAGES_REQUEUED,
            "Total number of messages released for redelivery",
            registry=self._registry,
        )

        self.messages_completed = Counter(
            METRIC_MESSAGES_COMPLETED,
            "Total number of messages deleted after processing",
            registry=self._registry,
        )

        self.leases_reclaimed = Counter(
            METRIC_LEASES_RECLAIMED,
            "Total number of stale leases reclaimed",
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of failed store calls",
            ["operation"],
            registry=self._registry,
        )

    def record_sent(self, topics: str | None, outcome: str) -> None:
        """Record a successful send."""
        self.messages_sent.labels(topics=topics or "", outcome=outcome).inc()

    def record_send_exhausted(self) -> None:
        self.send_exhausted.inc()

    def record_claimed(self, topics: str | None) -> None:
        self.messages_claimed.labels(topics=topics or "").inc()

    def record_heartbeat(self, renewed: bool) -> None:
        self.heartbeats.labels(result="renewed" if renewed else "lost").inc()

    def record_requeued(self) -> None:
        self.messages_requeued.inc()

    def record_completed(self) -> None:
        self.messages_completed.inc()

    def record_reclaimed(self, count: int) -> None:
        self.leases_reclaimed.inc(count)

    def record_store_error(self, operation: str) -> None:
        self.store_errors.labels(operation=operation).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, serve the default registry over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
