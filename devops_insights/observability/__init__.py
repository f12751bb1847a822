"""Observability layer - logging, metrics, and tracing."""

from devops_insights.observability.logging import setup_logging
from devops_insights.observability.metrics import MetricsCollector, get_metrics
from devops_insights.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "get_metrics", "setup_tracing", "get_tracer"]
