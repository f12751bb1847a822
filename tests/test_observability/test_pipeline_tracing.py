"""
Tests for OpenTelemetry tracing across the pipeline.

Verifies:
- TracerProvider setup with InMemorySpanExporter
- traceparent propagation through the Redis pub/sub envelope
- Poll and gateway delivery spans
- Structlog processor adds trace_id/span_id to log entries
"""

import json
from unittest.mock import AsyncMock

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from devops_insights.gateway.gateway import SubscriptionGateway
from devops_insights.notifier.publisher import RedisPublisher
from devops_insights.observability.tracing import (
    add_trace_context,
    extract_trace_context,
    get_tracer,
    inject_trace_context,
    is_tracing_enabled,
    setup_tracing,
    traced,
)
from devops_insights.services.poller import SourcePoller
from devops_insights.sources.fake_data import FakeStatusFetcher
from devops_insights.sources.registry import SourceRegistry
from devops_insights.sources.schemas import ChangeEvent

# OTel's global TracerProvider can only be set once per process, so it is
# initialized here once and the exporter is cleared between tests.
_exporter = InMemorySpanExporter()
_provider = setup_tracing("test-service", exporter=_exporter)


@pytest.fixture(autouse=True)
def _clear_spans():
    _exporter.clear()
    yield
    _exporter.clear()


def _spans(name: str):
    return [s for s in _exporter.get_finished_spans() if s.name == name]


def test_setup_enables_tracing():
    assert is_tracing_enabled()


class TestTraceContextPropagation:
    def test_inject_with_active_span(self):
        with get_tracer("test").start_as_current_span("parent"):
            fields = inject_trace_context()

        parts = fields["traceparent"].split("-")
        assert parts[0] == "00"
        assert len(parts[1]) == 32
        assert len(parts[2]) == 16

    def test_roundtrip(self):
        with get_tracer("test").start_as_current_span("publisher") as span:
            fields = inject_trace_context()
            expected = span.get_span_context()

        ctx = extract_trace_context(json.loads(json.dumps(fields)))
        with get_tracer("test").start_as_current_span("consumer", context=ctx) as child:
            assert child.get_span_context().trace_id == expected.trace_id

        (consumer,) = _spans("consumer")
        assert consumer.parent.span_id == expected.span_id

    @pytest.mark.parametrize("fields", [{}, {"traceparent": "garbage"}, {"traceparent": "00-zz-yy-01"}])
    def test_extract_invalid(self, fields):
        assert extract_trace_context(fields) is None


class TestTraced:
    def test_records_exception(self):
        with pytest.raises(ValueError):
            with traced(get_tracer("test"), "failing", {"region": "us-east"}):
                raise ValueError("boom")

        (span,) = _spans("failing")
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["region"] == "us-east"

    def test_structlog_processor(self):
        with get_tracer("test").start_as_current_span("logging"):
            event = add_trace_context(None, "info", {"event": "hello"})

        assert len(event["trace_id"]) == 32
        assert len(event["span_id"]) == 16

    def test_structlog_processor_without_span(self):
        assert add_trace_context(None, "info", {"event": "hello"}) == {"event": "hello"}


class TestPipelineSpans:
    @pytest.mark.asyncio
    async def test_poll_once_span(self, repository, us_east):
        poller = SourcePoller(FakeStatusFetcher(clock=lambda: 1_000_000.0), repository)

        await poller.poll_once(us_east)
        await poller.poll_once(us_east)

        spans = _spans("poller.poll_once")
        assert len(spans) == 2
        assert spans[0].attributes["region"] == "us-east"
        assert spans[0].attributes["changed"] is True
        assert "changed" not in spans[1].attributes

    @pytest.mark.asyncio
    async def test_gateway_delivery_continues_publisher_trace(self, repository, test_settings, fake_redis):
        gateway = SubscriptionGateway(
            repository, SourceRegistry.from_settings(test_settings), provider="acme",
        )
        ws = AsyncMock()
        gateway.connect(ws)
        gateway.subscribe(ws, "us-east")

        with get_tracer("test").start_as_current_span("poll") as poll_span:
            await RedisPublisher(fake_redis).publish(
                ChangeEvent(provider="acme", source="us-east", payload={"a": 1})
            )
            poll_ctx = poll_span.get_span_context()

        _, raw = fake_redis.published[0]
        assert "traceparent" in json.loads(raw)

        assert await gateway._dispatch_message(raw) == 1

        (delivery,) = _spans("gateway.deliver")
        assert delivery.context.trace_id == poll_ctx.trace_id
        assert delivery.parent.span_id == poll_ctx.span_id
