"""
OpenTelemetry tracing for polls and update delivery.

A poll on the leader and the gateway deliveries it causes on every replica
share one trace: the publisher writes a W3C ``traceparent`` into the Redis
pub/sub envelope and the receiving gateway continues from it.

    poller.poll_once (leader) → metrics:updates → gateway.deliver (replicas)

Tracing is off until ``setup_tracing()`` runs; until then every tracer is
a no-op and ``inject_trace_context()`` returns an empty dict.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

TRACE_PARENT_FIELD = "traceparent"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

_propagator = TraceContextTextMapPropagator()
_tracing_enabled = False


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install the global TracerProvider.

    Spans go to an OTLP gRPC collector in batches. A custom ``exporter``
    (tests pass an InMemorySpanExporter) is flushed synchronously instead.
    """
    global _tracing_enabled

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        endpoint = otlp_endpoint or DEFAULT_OTLP_ENDPOINT
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )
    trace.set_tracer_provider(provider)

    _tracing_enabled = True
    logger.info(
        "Tracing enabled for %s (exporter=%s)",
        service_name,
        type(exporter).__name__ if exporter else otlp_endpoint or DEFAULT_OTLP_ENDPOINT,
    )
    return provider


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    return _tracing_enabled


def inject_trace_context() -> dict[str, str]:
    """``{"traceparent": ...}`` for the active span, or ``{}`` outside one."""
    carrier: dict[str, str] = {}
    _propagator.inject(carrier)
    return {k: v for k, v in carrier.items() if k == TRACE_PARENT_FIELD}


def extract_trace_context(envelope: Mapping[str, Any]) -> Context | None:
    """
    Rebuild the publisher's context from a pub/sub envelope.

    Returns None when the envelope has no usable ``traceparent`` so the
    caller starts a fresh trace.
    """
    traceparent = envelope.get(TRACE_PARENT_FIELD)
    if not isinstance(traceparent, str) or not traceparent:
        return None

    ctx = _propagator.extract({TRACE_PARENT_FIELD: traceparent})
    if not trace.get_current_span(ctx).get_span_context().is_valid:
        logger.debug("Ignoring malformed traceparent %r", traceparent)
        return None
    return ctx


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: Mapping[str, Any] | None = None,
    parent_context: Context | None = None,
) -> Iterator[Span]:
    """
    Run the block inside a span; exceptions mark it failed and re-raise.

    Usage:
        with traced(tracer, "poller.poll_once", {"region": source.region}) as span:
            ...
    """
    with tracer.start_as_current_span(
        name,
        context=parent_context,
        attributes=dict(attributes) if attributes else None,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, str(exc))
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: tag log lines emitted inside a span with its ids."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict
