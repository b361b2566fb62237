from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Span

from leaddesk.context import get_correlation_id


CORRELATION_HEADER = b"x-correlation-id"


@dataclass
class _TracingState:
    provider: TracerProvider | None = None
    exporters_installed: bool = False
    test_exporters: list[InMemorySpanExporter] = field(default_factory=list)


_state = _TracingState()


def _provider_for(service_name: str) -> TracerProvider:
    """Create the process-wide provider once; the global provider cannot be replaced."""

    if _state.provider is None:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": os.getenv("APP_VERSION", "0.1.0"),
                "deployment.environment": os.getenv("APP_ENV", "local"),
            }
        )
        _state.provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_state.provider)
    return _state.provider


def setup_otel(service_name: str, enable: bool) -> TracerProvider | None:
    if not enable:
        return None

    provider = _provider_for(service_name)
    if _state.exporters_installed:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _state.exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = "leaddesk-api") -> InMemorySpanExporter:
    provider = _provider_for(service_name)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    _state.test_exporters.append(exporter)
    return exporter


@contextmanager
def lead_span(name: str, **attributes: Any) -> Iterator[Span]:
    """Run a block inside a `leaddesk.leads` span tagged with the request correlation id."""

    tracer = trace.get_tracer("leaddesk.leads")
    with tracer.start_as_current_span(name) as span:
        correlation_id = get_correlation_id()
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            if name == CORRELATION_HEADER:
                span.set_attribute("correlation_id", value.decode("latin-1"))
                break

    return server_request_hook
