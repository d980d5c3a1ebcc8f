from __future__ import annotations

from contextlib import asynccontextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
    OTLPSpanExporter,
)

from studybuddy_brain.config import settings

if settings.otel_trace_url:
    resource = Resource.create({"service.name": "studybuddy-brain"})
    provider = TracerProvider(resource=resource)
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_trace_url, timeout=5))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)

tracer = trace.get_tracer(__name__)


@asynccontextmanager
async def async_span(name: str, tracer_obj=tracer, **attrs):
    """Async context manager wrapping ``tracer.start_as_current_span``."""
    cm = tracer_obj.start_as_current_span(name, **attrs)
    if hasattr(cm, "__aenter__"):
        async with cm:
            yield
    else:
        with cm:
            yield
