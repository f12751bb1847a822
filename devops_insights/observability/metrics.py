"""
Prometheus metrics for monitoring the polling and distribution pipeline.

Defines and exposes metrics for:
- Poll outcomes and latency per region
- Detected payload changes
- Change events emitted and delivered
- WebSocket connections and subscriptions
- Leader status

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from devops_insights.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the devops-insights pipeline.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_poll("us-east", "changed", latency=0.12)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.polls = Counter(
            "devops_insights_polls_total",
            "Total number of source polls",
            ["region", "outcome"],  # outcome: changed, unchanged, fetch_error, storage_error, skipped
        )

        self.poll_latency = Histogram(
            "devops_insights_poll_latency_seconds",
            "Time to fetch and process one source poll",
            ["region"],
            buckets=LATENCY_BUCKETS,
        )

        self.changes_detected = Counter(
            "devops_insights_changes_detected_total",
            "Total payload changes persisted",
            ["region"],
        )

        self.events_emitted = Counter(
            "devops_insights_events_emitted_total",
            "Total change events handed to a publisher",
            ["mode"],  # mode: feed, direct
        )

        self.events_dropped = Counter(
            "devops_insights_events_dropped_total",
            "Change events skipped by the notifier",
            ["mode", "reason"],
        )

        self.feed_errors = Counter(
            "devops_insights_feed_errors_total",
            "Change feed listener errors",
            ["reason"],  # reason: connection_lost, lookup_failed
        )

        self.events_delivered = Counter(
            "devops_insights_events_delivered_total",
            "Total update messages sent to WebSocket clients",
            ["region"],
        )

        self.ws_connections = Gauge(
            "devops_insights_ws_connections",
            "Number of connected WebSocket clients",
        )

        self.ws_subscriptions = Gauge(
            "devops_insights_ws_subscriptions",
            "Number of active region subscriptions",
        )

        self.leader_status = Gauge(
            "devops_insights_leader",
            "Leader lease status of this process (1=leader, 0=follower)",
            ["key"],
        )

        self.leader_transitions = Counter(
            "devops_insights_leader_transitions_total",
            "Leadership acquisitions and losses",
            ["key", "transition"],  # transition: acquired, lost
        )

        self.storage_latency = Histogram(
            "devops_insights_storage_latency_seconds",
            "Time spent in Metric Store operations",
            ["operation"],  # record_change, get_fingerprint, query_history
            buckets=LATENCY_BUCKETS,
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_poll(
        self,
        region: str,
        outcome: str,
        latency: float | None = None,
    ) -> None:
        """
        Record one poll cycle for a source.

        Args:
            region: Region polled
            outcome: changed, unchanged, fetch_error, storage_error or skipped
            latency: Optional fetch+compare latency in seconds
        """
        self.polls.labels(region=region, outcome=outcome).inc()
        if outcome == "changed":
            self.changes_detected.labels(region=region).inc()
        if latency is not None:
            self.poll_latency.labels(region=region).observe(latency)

    def record_event_emitted(self, mode: str) -> None:
        self.events_emitted.labels(mode=mode).inc()

    def record_event_dropped(self, mode: str, reason: str) -> None:
        self.events_dropped.labels(mode=mode, reason=reason).inc()

    def record_feed_error(self, reason: str) -> None:
        self.feed_errors.labels(reason=reason).inc()

    def record_delivery(self, region: str, count: int = 1) -> None:
        """
        Record update messages delivered to subscribers.

        Args:
            region: Region of the update
            count: Number of clients the update was sent to
        """
        if count > 0:
            self.events_delivered.labels(region=region).inc(count)

    def set_ws_state(self, connections: int, subscriptions: int) -> None:
        self.ws_connections.set(connections)
        self.ws_subscriptions.set(subscriptions)

    def set_leader(self, key: str, is_leader: bool) -> None:
        """
        Record a leadership change for a lease key.

        Args:
            key: Lease key
            is_leader: New leadership state
        """
        self.leader_status.labels(key=key).set(1 if is_leader else 0)
        transition = "acquired" if is_leader else "lost"
        self.leader_transitions.labels(key=key, transition=transition).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
